"""
Email extraction package.

Submodules are imported directly (inbox_extractor.email_processing.processor
and friends); the package namespace stays empty so that integrations can
import the shared models without pulling in the orchestrator.
"""
