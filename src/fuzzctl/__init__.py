"""fuzzctl: orchestration of external fuzzing engines (AFL++, libFuzzer)."""

__version__ = "0.1.0"
