"""
Flux Studio
===========

Generative image operations driven through asynchronous provider jobs:
submit a job, poll it to a terminal state, then download and store the image.

Available modules:
    - config: Settings discovery and credentials
    - errors: Error taxonomy (codes and categories)
    - models: Job, JobStatus, OperationRequest, OperationResult
    - client: ProviderClient interface and shared HTTP plumbing
    - flux: Black Forest Labs adapter (generate, edit, expand, fuse, style)
    - stability: Stability AI adapter (upscale)
    - router: One client in front of both providers
    - poller: JobPoller (fixed interval, attempt budget)
    - artifacts: ArtifactRetriever and the local content store
    - operations: Per-kind validation and payload building
    - orchestrator: OperationOrchestrator, the end-to-end pipeline
    - preferences: Persisted per-kind default options
    - cleanup: Age-based sweep of stored files

Quick Start:
    from flux_studio.artifacts import LocalContentStore
    from flux_studio.config import get_config
    from flux_studio.models import OperationKind
    from flux_studio.orchestrator import OperationOrchestrator
    from flux_studio.router import ProviderRouter

    cfg = get_config()
    orchestrator = OperationOrchestrator(
        ProviderRouter.from_config(cfg), LocalContentStore(cfg["content_dir"]),
    )
    result = await orchestrator.execute(OperationKind.GENERATE, [], "A sunset over mountains")
    print(result.artifact_path)
"""
