"""
Demo data generator for Gaplens.

Usage:
    from gaplens.demo import generate_demo_dataset
    from gaplens.storage import InMemoryRepository

    repository = InMemoryRepository.from_dict(generate_demo_dataset(seed=42))

    # Or from the command line
    gaplens demo --output org.yaml
"""

from gaplens.demo.generator import (
    DemoConfig,
    DemoGenerator,
    DemoProfile,
    generate_demo_dataset,
)

__all__ = [
    "DemoConfig",
    "DemoGenerator",
    "DemoProfile",
    "generate_demo_dataset",
]
