"""Session lifecycle and progress reconciliation core for the Noxus streak tracker."""

__version__ = "0.1.0"
