import os

from hypothesis import HealthCheck, settings

# Thorough profile for CI runs
settings.register_profile(
    "ci",
    max_examples=200,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
    print_blob=True,
)

# Quick profile for local iteration
settings.register_profile(
    "dev",
    max_examples=25,
    deadline=None,
    derandomize=True,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
