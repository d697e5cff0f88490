"""Tests for bulk asset actions."""

from pathlib import Path
from unittest.mock import patch

import pytest

from django.core.exceptions import ValidationError
from django.db import DatabaseError

from assets.exceptions import PersistenceError
from assets.factories import AssetFactory
from assets.models import Asset, AssetLogEntry


def _stored_files(settings):
    directory = Path(settings.MEDIA_ROOT) / settings.ASSET_IMAGE_DIR
    if not directory.exists():
        return set()
    return {p.name for p in directory.iterdir()}


@pytest.fixture
def fleet(category, user):
    """Five assets: two already retired, one assigned, two in stock."""
    return [
        AssetFactory(asset_tag="B-1", category=category, status="retired"),
        AssetFactory(asset_tag="B-2", category=category, status="retired"),
        AssetFactory(
            asset_tag="B-3",
            category=category,
            status="assigned",
            assigned_to=user,
        ),
        AssetFactory(asset_tag="B-4", category=category),
        AssetFactory(asset_tag="B-5", category=category),
    ]


@pytest.mark.django_db
class TestBulkStatusChange:
    def test_retire_logs_only_changed_rows(self, admin_user, fleet):
        from assets.services.lifecycle import bulk_apply

        result = bulk_apply([a.pk for a in fleet], "set_retired", admin_user)

        assert result == {"action": "set_retired", "affected": 5, "logged": 3}
        assert set(Asset.objects.values_list("status", flat=True)) == {
            "retired"
        }
        assert not Asset.objects.filter(assigned_to__isnull=False).exists()
        logged = set(
            AssetLogEntry.objects.values_list("asset_id", flat=True)
        )
        assert logged == {fleet[2].pk, fleet[3].pk, fleet[4].pk}

    def test_status_details_mention_cleared_assignment(
        self, admin_user, fleet
    ):
        from assets.services.lifecycle import bulk_apply

        bulk_apply([fleet[2].pk, fleet[3].pk], "set_repair", admin_user)

        assigned = AssetLogEntry.objects.get(asset_id=fleet[2].pk)
        assert assigned.action == "updated"
        assert assigned.user == admin_user
        assert assigned.details.splitlines() == [
            "Status changed from 'Assigned' to 'In Repair'.",
            "Assignment changed from 'Test User (User #testuser)' to "
            "'Unassigned'.",
        ]
        in_stock = AssetLogEntry.objects.get(asset_id=fleet[3].pk)
        assert in_stock.details == (
            "Status changed from 'In Stock' to 'In Repair'."
        )

    def test_string_ids_and_junk_are_tolerated(self, admin_user, fleet):
        from assets.services.lifecycle import bulk_apply

        result = bulk_apply(
            [str(fleet[3].pk), "abc", None, fleet[3].pk],
            "set_repair",
            admin_user,
        )
        assert result["affected"] == 1

    def test_failure_rolls_back_everything(self, admin_user, fleet):
        from assets.services.lifecycle import bulk_apply

        before = dict(Asset.objects.values_list("pk", "status"))
        with patch.object(
            AssetLogEntry.objects,
            "bulk_create",
            side_effect=DatabaseError("boom"),
        ):
            with pytest.raises(PersistenceError):
                bulk_apply([a.pk for a in fleet], "set_retired", admin_user)

        assert dict(Asset.objects.values_list("pk", "status")) == before
        assert Asset.objects.get(pk=fleet[2].pk).assigned_to_id is not None
        assert not AssetLogEntry.objects.exists()


@pytest.mark.django_db
class TestBulkDelete:
    def test_deletes_rows_files_and_logs(
        self, settings, admin_user, image_upload
    ):
        from assets.services.images import process_and_save_image
        from assets.services.lifecycle import bulk_apply

        pictured = AssetFactory(
            asset_tag="D-1",
            image_filename=process_and_save_image(image_upload()),
        )
        plain = AssetFactory(asset_tag="D-2")
        survivor = AssetFactory(asset_tag="D-3")

        result = bulk_apply([pictured.pk, plain.pk], "delete", admin_user)

        assert result == {"action": "delete", "affected": 2, "logged": 2}
        assert list(Asset.objects.values_list("pk", flat=True)) == [
            survivor.pk
        ]
        assert _stored_files(settings) == set()
        details = sorted(
            AssetLogEntry.objects.filter(action="deleted").values_list(
                "details", flat=True
            )
        )
        assert details == [
            "Asset deleted (was tag: 'D-1').",
            "Asset deleted (was tag: 'D-2').",
        ]

    def test_failed_delete_keeps_rows_and_files(
        self, settings, admin_user, image_upload
    ):
        from assets.services.images import process_and_save_image
        from assets.services.lifecycle import bulk_apply

        pictured = AssetFactory(
            image_filename=process_and_save_image(image_upload())
        )
        files = _stored_files(settings)

        with patch.object(
            AssetLogEntry.objects,
            "bulk_create",
            side_effect=DatabaseError("boom"),
        ):
            with pytest.raises(PersistenceError):
                bulk_apply([pictured.pk], "delete", admin_user)

        assert Asset.objects.filter(pk=pictured.pk).exists()
        assert _stored_files(settings) == files
        assert len(files) == 2


@pytest.mark.django_db
class TestBulkValidation:
    def test_empty_selection(self, admin_user):
        from assets.services.lifecycle import bulk_apply

        with pytest.raises(ValidationError, match="No items were selected"):
            bulk_apply([], "delete", admin_user)

    def test_unknown_action(self, admin_user, asset):
        from assets.services.lifecycle import bulk_apply

        with pytest.raises(ValidationError, match="Invalid bulk action"):
            bulk_apply([asset.pk], "set_assigned", admin_user)
        asset.refresh_from_db()
        assert asset.status == "in_stock"

    def test_no_matching_assets(self, admin_user):
        from assets.services.lifecycle import bulk_apply

        with pytest.raises(ValidationError, match="None of the selected"):
            bulk_apply([991, 992], "set_retired", admin_user)
        assert not AssetLogEntry.objects.exists()
