"""Feed polling, LLM relevance classification and alerting service."""
