"""Configuration for the model enrichment service."""

import os

# GCP Project
PROJECT_ID = os.getenv("GCP_PROJECT_ID", "")

# Firestore collections
MODELS_COLLECTION = os.getenv("MODELS_COLLECTION", "models")
EXECUTIONS_COLLECTION = os.getenv("EXECUTIONS_COLLECTION", "workflow_executions")
EXECUTION_LOGS_SUBCOLLECTION = "logs"

# Storage backend: "firestore" or "memory"
STORAGE_BACKEND = os.getenv("ENRICHMENT_STORAGE", "firestore")
STORAGE_TIMEOUT_SECS = float(os.getenv("STORAGE_TIMEOUT_SECS", "20"))

# Research calls
RESEARCH_TIMEOUT_SECS = float(os.getenv("RESEARCH_TIMEOUT_SECS", "90"))
RESEARCH_MAX_RETRIES = int(os.getenv("RESEARCH_MAX_RETRIES", "3"))
RESEARCH_BACKOFF_BASE_SECS = float(os.getenv("RESEARCH_BACKOFF_BASE_SECS", "5"))
RESEARCH_BACKOFF_MAX_SECS = float(os.getenv("RESEARCH_BACKOFF_MAX_SECS", "60"))
USE_MOCK_LLM = os.getenv("USE_MOCK_LLM", "false").lower() == "true"

# Cost governance (USD)
MAX_EXECUTION_COST_USD = float(os.getenv("MAX_EXECUTION_COST_USD", "25.0"))

# Pause between batches (rate-limit headroom)
BATCH_PAUSE_SECS = float(os.getenv("BATCH_PAUSE_SECS", "30"))

# Execution logs kept on a snapshot
MAX_LOG_ENTRIES = int(os.getenv("MAX_LOG_ENTRIES", "500"))

# Eligible-entity selection
SELECTION_POOL_LIMIT = 200
SELECTION_MAX_ENTITIES = 50
LISTING_LIMIT = 100

# Process logging / HTTP
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
API_PORT = int(os.getenv("PORT", os.getenv("API_PORT", "8080")))
