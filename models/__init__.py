"""Data models for the prompt workbench.

Updates: v0.3.0 - 2026-10-19 - Export public listing and score candidate records.
Updates: v0.2.0 - 2026-10-19 - Export persistence task and durable prompt records.
Updates: v0.1.0 - 2026-10-19 - Export workspace keyword and snapshot dataclasses.
"""

from .persistence_task import PersistenceTask, PromptStatus, TaskAction
from .prompt_record import PromptRecord, PromptVersion, PublicPrompt, ScoreCandidate
from .workspace import WorkspaceKeyword, WorkspaceSnapshot

__all__ = [
    "PersistenceTask",
    "PromptRecord",
    "PromptStatus",
    "PromptVersion",
    "PublicPrompt",
    "ScoreCandidate",
    "TaskAction",
    "WorkspaceKeyword",
    "WorkspaceSnapshot",
]
