"""HTTP interface for the budget tracker."""
