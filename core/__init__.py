"""
Deep-Check Core

Central module exports for the Deep-Check keystroke biometrics engine.
"""

from core.orchestrator import BiometricOrchestrator, BiometricSession

__all__ = [
    "BiometricOrchestrator",
    "BiometricSession",
]
