"""
LLM dispatch layer — routing, resilience and execution modes.

Modules:
- llm_config: Provider identities, routing rules, retry policy
- models: LLMRequest / LLMResponse / StreamChunk
- router: ModelRouter — model string → provider
- registry: ProviderRegistry — immutable provider → adapter map
- resilience: ResilienceExecutor — timeout + retry with backoff
- streaming: StreamHandler / StreamHandle — callback streaming contract
- dispatch: Dispatcher — the single route/invoke/retry path
- runtime: BackgroundRuntime — the client's private event loop
"""
