from typing import Dict, List


class ABTestError(Exception):
    """Base class for A/B test rule violations."""


class InvalidStatusTransition(ABTestError):
    def __init__(self, current: str, requested: str, valid_transitions: List[str]):
        self.current = current
        self.requested = requested
        self.valid_transitions = valid_transitions
        super().__init__(f"Cannot change status from {current} to {requested}")


class ABTestNotRunning(ABTestError):
    def __init__(self, test_id: str):
        self.test_id = test_id
        super().__init__("A/B test not running")


class RunningTestDeletion(ABTestError):
    def __init__(self, running_tests: List[Dict[str, str]]):
        self.running_tests = running_tests
        if len(running_tests) == 1:
            message = "Cannot delete running A/B test. Stop the test first."
        else:
            message = "Cannot delete running A/B tests"
        super().__init__(message)
