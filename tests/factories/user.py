"""
User test factory.

Generates registration payloads for the auth endpoints.
"""

import factory
from faker import Faker

fake = Faker()


class UserFactory(factory.Factory):
    """
    Factory for generating /auth/register payloads.

    Usage:
        payload = UserFactory()
        payload = UserFactory(email="custom@example.com")
    """

    class Meta:
        model = dict

    email = factory.LazyFunction(lambda: fake.unique.email().lower())
    password = "correct-horse-battery"  # noqa: S105
    first_name = factory.LazyFunction(fake.first_name)
    last_name = factory.LazyFunction(fake.last_name)
    company_name = factory.LazyFunction(fake.company)
    company_address = factory.LazyFunction(lambda: fake.address().replace("\n", ", "))
    company_phone = "555-0199"
