"""
Governance Voting Agent

Mirrors governance proposals into a local store, asks a reasoning service for a
yes/no recommendation on each one, and casts the recommended vote after a
configurable delay.
"""

__version__ = "0.1.0"

# Configuration
from neuronvote.config import Settings

# Analysis
from neuronvote.analysis import AnalysisFailure, AnalysisPipeline, AnalysisResult

# Clients
from neuronvote.governance_client import GovernanceClient, HttpGovernanceClient, Neuron
from neuronvote.models import AgentLog, AgentVote, ConfigEntry, Proposal, ScheduledVote, Vote
from neuronvote.orchestrate import Orchestrator
from neuronvote.reasoning_client import ReasoningClient, ReasoningService
from neuronvote.service import ProposalService

__all__ = [
    # Version
    "__version__",
    # Models
    "Proposal",
    "ScheduledVote",
    "AgentVote",
    "AgentLog",
    "ConfigEntry",
    "Vote",
    # Config
    "Settings",
    # Analysis
    "AnalysisPipeline",
    "AnalysisResult",
    "AnalysisFailure",
    # Clients
    "GovernanceClient",
    "HttpGovernanceClient",
    "Neuron",
    "ReasoningClient",
    "ReasoningService",
    # Runtime
    "Orchestrator",
    "ProposalService",
]
