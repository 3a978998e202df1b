"""
Tests for apps.common.types.
"""

from django.test import SimpleTestCase

from apps.common.types import (
    ROLE_ADMIN,
    BusinessError,
    CallerIdentity,
    ConflictError,
    InternalError,
    NotFoundError,
    ValidationError,
)


class BusinessErrorTestCase(SimpleTestCase):
    def test_error_codes(self) -> None:
        self.assertEqual(NotFoundError("x").code, "not_found")
        self.assertEqual(ValidationError("x").code, "bad_request")
        self.assertEqual(ConflictError("x").code, "conflict")
        self.assertEqual(InternalError("x").code, "internal")

    def test_all_errors_are_business_errors(self) -> None:
        for error_class in (NotFoundError, ValidationError, ConflictError, InternalError):
            self.assertTrue(issubclass(error_class, BusinessError))

    def test_validation_error_carries_field(self) -> None:
        error = ValidationError("Plan name is required", field="name")

        self.assertEqual(str(error), "Plan name is required")
        self.assertEqual(
            error.to_dict(),
            {"code": "bad_request", "message": "Plan name is required", "field": "name"},
        )

    def test_to_dict_without_field(self) -> None:
        self.assertEqual(ConflictError("taken").to_dict(), {"code": "conflict", "message": "taken"})


class CallerIdentityTestCase(SimpleTestCase):
    def test_user_is_scoped_to_own_id(self) -> None:
        caller = CallerIdentity(user_id="user-1")

        self.assertFalse(caller.is_admin)
        self.assertEqual(caller.scoped_user_id, "user-1")

    def test_admin_is_unscoped(self) -> None:
        caller = CallerIdentity(user_id="admin-1", role=ROLE_ADMIN)

        self.assertTrue(caller.is_admin)
        self.assertIsNone(caller.scoped_user_id)
