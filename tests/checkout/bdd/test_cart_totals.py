"""BDD tests for cart totals."""

from pytest_bdd import scenarios

scenarios("features/cart_totals.feature")
