"""Read-only probes of the local machine."""
from homestead.discovery.hwdetect import SystemDetector, classify_pi_model, kb_to_gb

__all__ = ['SystemDetector', 'classify_pi_model', 'kb_to_gb']
