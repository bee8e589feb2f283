"""Workflow definitions module."""

from workflows.sync_sweep_workflow import BankSyncSweepWorkflow, SweepInput, SweepResult

__all__ = ["BankSyncSweepWorkflow", "SweepInput", "SweepResult"]
