"""Core orchestration package.

Architectural role:
    Holds the logic that sits between the tool handlers and the remote
    service client: turning caller references into remote tokens, waiting on
    asynchronous jobs and choosing between alternative remote paths.

Composition:
    - `validation`: Input normalization helpers shared by every layer.
    - `resolver`: Resource handle / token / inline-bytes resolution.
    - `job_polling`: Bounded polling of remote jobs to a terminal state.
    - `strategies`: Ordered fallback chains (optimization, image-to-image).
"""
