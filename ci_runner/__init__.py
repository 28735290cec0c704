"""ci-runner: run a .build.yml pipeline (setup, build, test, qa) locally or in CI."""

__version__ = "0.1.0"
