"""Parent/child task, points and reward tracking service."""
