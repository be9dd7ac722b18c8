from src.pipeline.orchestrator import Orchestrator, StopReason
