"""Test package for the drill trainer.

Core modules are tested with an injected fake clock so that scripted drills
are deterministic. UI smoke tests run headlessly using pygame's dummy video
driver. Run ``pytest`` from the project root.
"""
