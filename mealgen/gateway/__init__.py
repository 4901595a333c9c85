"""Generation Gateway.

Multi-provider orchestration for meal planning and ingredient recognition:
  - Provider catalog and per-kind priority lists
  - Provider Adapters (one HTTP call each, fixed failure taxonomy)
  - Cooldown Tracker (5-minute exclusion after a 429)
  - Response Recovery Pipeline (strict → sanitized → literal → pattern)
  - Consensus Aggregator (cross-validated recognition)
  - Generation Orchestrator (sequential fallback, typed failures)
"""
