"""
campaign_engine/services/ -- Orchestration and external-collaborator adapters.

Submodules:
    llm_client        Single-shot completion client (Anthropic SDK, claude CLI,
                      offline) with timeout and cancellation.
    prompt_builder    Prompts for the semantic graph review.
    semantic_checker  Semantic pass: prompt, completion, tolerant parse.
    override_filter   Suppression of human-overridden findings.
    pipeline          ConsistencyPipeline tying every pass together.
"""
