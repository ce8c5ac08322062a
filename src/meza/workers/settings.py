"""arq worker settings module.

Import path for arq CLI: arq meza.workers.settings.WorkerSettings
"""

from __future__ import annotations

from meza.workers.challenge_worker import ChallengeWorkerSettings as WorkerSettings

__all__ = ["WorkerSettings"]
