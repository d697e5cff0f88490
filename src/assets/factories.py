"""Factory Boy factories for AssetTrack test data generation."""

import datetime

import factory
from factory.django import DjangoModelFactory


class UserFactory(DjangoModelFactory):
    """Factory for CustomUser model."""

    class Meta:
        model = "accounts.CustomUser"
        skip_postgeneration_save = True

    username = factory.Sequence(lambda n: f"user{n}")
    email = factory.LazyAttribute(lambda o: f"{o.username}@example.com")
    display_name = factory.Faker("name")
    role = "user"
    is_active = True

    @factory.post_generation
    def password(self, create, extracted, **kwargs):
        pwd = extracted or "testpass123!"
        self.set_password(pwd)
        if create:
            self.save(update_fields=["password"])


class CategoryFactory(DjangoModelFactory):
    """Factory for Category model."""

    class Meta:
        model = "assets.Category"

    name = factory.Sequence(lambda n: f"Category {n}")
    description = factory.Faker("sentence")


class SupplierFactory(DjangoModelFactory):
    """Factory for Supplier model."""

    class Meta:
        model = "assets.Supplier"

    name = factory.Sequence(lambda n: f"Supplier {n}")
    contact_person = factory.Faker("name")
    phone = "09171234567"
    email = factory.LazyAttribute(
        lambda o: f"sales{o.name.split()[-1]}@example.com"
    )


class AssetFactory(DjangoModelFactory):
    """Factory for Asset model.

    Defaults to an unassigned, in-stock asset. Pass both
    ``status="assigned"`` and ``assigned_to`` for an assigned one.
    """

    class Meta:
        model = "assets.Asset"

    asset_tag = factory.Sequence(lambda n: f"AT-{n:05d}")
    category = factory.SubFactory(CategoryFactory)
    supplier = None
    model = factory.Sequence(lambda n: f"Model {n}")
    serial_number = factory.Sequence(lambda n: f"SN{n:06d}")
    purchase_date = datetime.date(2024, 1, 15)
    warranty_expiry = datetime.date(2027, 1, 15)
    status = "in_stock"
    assigned_to = None
    image_filename = ""


class MaintenanceTaskFactory(DjangoModelFactory):
    """Factory for MaintenanceTask model."""

    class Meta:
        model = "assets.MaintenanceTask"

    computer = factory.SubFactory(AssetFactory)
    created_by = factory.SubFactory(UserFactory)
    title = factory.Sequence(lambda n: f"Maintenance {n}")
    scheduled_date = factory.LazyFunction(
        lambda: datetime.date.today() + datetime.timedelta(days=7)
    )
    notes = ""
