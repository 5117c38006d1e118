# config/analyzer_config.py

ANALYZER_CONFIG = {
    "intent_refiner": {
        "model": {
            "name": "llama-3.3-70b-versatile",
            "temperature": 0.2,
            "max_tokens": 500,
            "retry_count": 2
        },
        "max_content_chars": 2000,
        "max_key_terms": 8,
        "timeout": 30
    },
    "link_prioritizer": {
        "model": {
            "name": "llama-3.3-70b-versatile",
            "temperature": 0.0,
            "max_tokens": 150,
            "retry_count": 2
        },
        "max_links_per_prompt": 50,
        "max_url_display_chars": 100,
        "timeout": 30
    },
    "unit_analyzer": {
        "model": {
            "name": "llama-3.3-70b-versatile",
            "temperature": 0.1,
            "max_tokens": 2000,
            "retry_count": 3
        },
        "default_confidence": 0.5,
        "default_reasoning": "analysis completed",
        "timeout": 90
    },
    "size_router": {
        # 30,000 tokens at roughly 4 characters per token
        "safe_char_limit": 120000,
        "chunk_size": 3000
    },
    "retrieval": {
        "timeout": 45,
        "firecrawl": {
            "api_url": "https://api.firecrawl.dev/v1/scrape",
            "request_timeout_ms": 30000
        },
        "tavily": {
            "api_url": "https://api.tavily.com/search",
            "search_depth": "basic",
            "max_results": 3,
            "results_to_combine": 2,
            "max_query_chars": 300
        },
        "discovery": {
            "search_depth": "advanced",
            "max_results": 5,
            "candidates_to_fetch": 3,
            "min_content_chars": 1000,
            "max_content_chars": 150000,
            "max_query_chars": 250
        },
        "direct": {
            "user_agent": "Mozilla/5.0 (compatible; InboxExtractor/1.0)",
            "max_content_chars": 500000
        }
    },
    "knowledge_base": {
        "top_k": 5,
        "timeout": 15
    },
    "email_source": {
        "timeout": 30
    },
    "pipeline": {
        "max_concurrent_oracle_calls": 5,
        "recorder_drain_timeout": 5
    }
}
