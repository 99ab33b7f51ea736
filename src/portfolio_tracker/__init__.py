"""Personal stock portfolio tracker."""
