#!/usr/bin/env python3
"""
Tests for the storage orchestrator: upload, download, presign, listing,
delete and bulk upload, plus the consistency guarantees between the blob
store and the metadata store.
"""

import os
import sys
import unittest
from unittest.mock import patch

from sqlalchemy.exc import SQLAlchemyError

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from storage_fixtures import StorageTestCase, make_upload  # noqa: E402

from filestore.models import Resource  # noqa: E402
from filestore.services.exceptions import (  # noqa: E402
    GENERIC_ERROR_MESSAGE,
    AccessDeniedError,
    EntityNotFoundError,
    MisconfiguredAccessError,
    PayloadTooLargeError,
    ResourceNotActiveError,
    ResourceNotFoundError,
    StorageBackendError,
    StorageLimitExceededError,
    ValidationError,
)
from filestore.services.orchestrator import UploadStatus  # noqa: E402

PDF_BYTES = b'%PDF-1.7\n' + b'0' * 91


class ServiceTestCase(StorageTestCase):

    def setUp(self):
        super().setUp()
        self.developer = self.make_user('dev', ['DEVELOPER'], nickname='Dana')
        self.tester = self.make_user('qa', ['TESTER'])
        self.manager = self.make_user('lead', ['MANAGER'])
        self.viewer = self.make_user('guest', ['VIEWER'])
        self.project = self.make_project(max_storage_size=1000)

    def upload(self, name='notes.txt', data=100, user=None, roles=None, content_type=None):
        user = user or self.developer
        return self.service.upload_file(make_upload(name, data, content_type), self.project.id, user.id, roles)


class TestUpload(ServiceTestCase):

    def test_upload_creates_active_resource(self):
        resource = self.upload('report.pdf', PDF_BYTES)

        stored = self.reload_resource(resource.id)
        self.assertEqual(stored.status, 'ACTIVE')
        self.assertEqual(stored.size, len(PDF_BYTES))
        self.assertEqual(stored.name, 'report.pdf')
        self.assertEqual(stored.content_type, 'application/pdf')
        self.assertEqual(stored.type, 'DOCUMENT')
        self.assertEqual(stored.created_by_id, self.developer.id)
        self.assertEqual(stored.updated_by_id, self.developer.id)
        self.assertTrue(stored.key.startswith(f"project-{self.project.id}/"))
        self.assertTrue(stored.key.endswith('-report.pdf'))
        self.assertEqual(self.blob_store.objects[stored.key], PDF_BYTES)
        self.assert_usage_invariant(self.project.id)
        self.assert_resource_invariant(stored)

    def test_content_type_is_passed_to_blob_store(self):
        with patch.object(self.blob_store, 'save_fileobj', wraps=self.blob_store.save_fileobj) as save:
            self.upload('report.pdf', PDF_BYTES)
        self.assertEqual(save.call_args.kwargs['content_type'], 'application/pdf')

    def test_text_that_starts_like_a_bitmap_is_stored_as_text(self):
        resource = self.upload('notes.txt', b'BMW fleet report, Q3 figures\n', content_type='text/plain')
        self.assertEqual(resource.content_type, 'text/plain')
        self.assertEqual(resource.type, 'DOCUMENT')

    def test_declared_content_type_used_when_nothing_detected(self):
        resource = self.upload('data.unknownext', b'\x00\x01\x02', content_type='application/x-custom')
        self.assertEqual(resource.content_type, 'application/x-custom')
        self.assertEqual(resource.type, 'OTHER')

    def test_default_content_type_as_last_resort(self):
        resource = self.upload('blob', b'\x00\x01\x02')
        self.assertEqual(resource.content_type, 'application/octet-stream')

    def test_allowed_roles_default_to_uploader_roles(self):
        resource = self.upload()
        self.assertEqual(resource.allowed_roles, ['DEVELOPER'])

    def test_allowed_roles_from_request(self):
        resource = self.upload(roles=['tester', 'bogus'])
        self.assertEqual(resource.allowed_roles, ['TESTER'])

    def test_empty_file_is_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            self.upload(data=b'')
        self.assertEqual(str(ctx.exception), 'File cannot be empty')
        self.assertEqual(self.blob_store.calls, [])

    def test_oversized_file_is_rejected(self):
        with self.assertRaises(PayloadTooLargeError):
            self.upload(data=1001)
        self.assertEqual(self.blob_store.calls, [])

    def test_blocked_extension_is_case_insensitive(self):
        for name in ['setup.exe', 'SETUP.EXE', 'deploy.Sh']:
            with self.subTest(name=name):
                with self.assertRaises(ValidationError):
                    self.upload(name)
        self.assertEqual(self.blob_store.calls, [])
        self.assertEqual(Resource.query.count(), 0)

    def test_unknown_project(self):
        with self.assertRaises(EntityNotFoundError):
            self.service.upload_file(make_upload('a.txt', 10), 999, self.developer.id)
        self.assertEqual(self.blob_store.calls, [])

    def test_unknown_user(self):
        with self.assertRaises(EntityNotFoundError):
            self.service.upload_file(make_upload('a.txt', 10), self.project.id, 999)
        self.assertEqual(self.blob_store.calls, [])

    def test_quota_exceeded_touches_no_store(self):
        self.upload('first.bin', 600)
        calls_before = list(self.blob_store.calls)

        with self.assertRaises(StorageLimitExceededError):
            self.upload('second.bin', 500)

        self.assertEqual(self.blob_store.calls, calls_before)
        self.assertEqual(Resource.query.count(), 1)
        self.assertEqual(self.reload_project(self.project.id).storage_size, 600)

    def test_blob_write_failure_leaves_no_metadata(self):
        self.blob_store.fail_on.add('save')

        with self.assertRaises(StorageBackendError) as ctx:
            self.upload()

        self.assertEqual(ctx.exception.operation, 'upload')
        self.assertEqual(Resource.query.count(), 0)
        self.assertEqual(self.reload_project(self.project.id).storage_size, 0)

    def test_metadata_failure_removes_new_blob(self):
        with patch.object(self.service.metadata, 'add', side_effect=SQLAlchemyError('insert failed')):
            with self.assertRaises(SQLAlchemyError):
                self.upload()

        saved = self.blob_store.calls_for('save')
        self.assertEqual(len(saved), 1)
        self.assertEqual(self.blob_store.calls_for('delete'), saved)
        self.assertEqual(self.blob_store.objects, {})
        self.assertEqual(Resource.query.count(), 0)
        self.assertEqual(self.reload_project(self.project.id).storage_size, 0)

    def test_failed_orphan_cleanup_is_logged(self):
        self.blob_store.fail_on.add('delete')
        with patch.object(self.service.metadata, 'add', side_effect=SQLAlchemyError('insert failed')):
            with self.assertLogs('filestore.services.orchestrator', level='ERROR') as logs:
                with self.assertRaises(SQLAlchemyError):
                    self.upload()
        self.assertTrue(any('Orphaned blob' in line for line in logs.output))


class TestDownload(ServiceTestCase):

    def test_round_trip(self):
        resource = self.upload('report.pdf', PDF_BYTES)

        with self.service.download_file(resource.id, self.project.id, self.developer.id) as download:
            self.assertEqual(download.file_name, 'report.pdf')
            self.assertEqual(download.content_type, 'application/pdf')
            self.assertEqual(download.size, len(PDF_BYTES))
            self.assertEqual(download.stream.read(), PDF_BYTES)
        self.assertTrue(download.stream.closed)

    def test_iter_chunks_closes_stream(self):
        resource = self.upload(data=b'abcdef')
        download = self.service.download_file(resource.id, self.project.id, self.developer.id)
        self.assertEqual(b''.join(download.iter_chunks(chunk_size=4)), b'abcdef')
        self.assertTrue(download.stream.closed)

    def test_user_without_shared_role_is_denied(self):
        resource = self.upload()
        with self.assertRaises(AccessDeniedError):
            self.service.download_file(resource.id, self.project.id, self.viewer.id)
        self.assertEqual(self.blob_store.calls_for('open'), [])

    def test_manager_has_no_read_bypass(self):
        resource = self.upload()
        with self.assertRaises(AccessDeniedError):
            self.service.download_file(resource.id, self.project.id, self.manager.id)

    def test_resource_without_roles_is_misconfigured(self):
        resource = self.upload()
        resource.allowed_roles = []
        self.service.metadata.commit()
        with self.assertRaises(MisconfiguredAccessError):
            self.service.download_file(resource.id, self.project.id, self.developer.id)

    def test_resource_in_other_project_is_not_found(self):
        resource = self.upload()
        other = self.make_project(name='Other')
        with self.assertRaises(ResourceNotFoundError):
            self.service.download_file(resource.id, other.id, self.developer.id)

    def test_deleted_resource_is_not_active(self):
        resource = self.upload()
        self.service.delete_file(resource.id, self.project.id, self.developer.id)
        with self.assertRaises(ResourceNotActiveError):
            self.service.download_file(resource.id, self.project.id, self.developer.id)

    def test_blob_read_failure(self):
        resource = self.upload()
        self.blob_store.fail_on.add('open')
        with self.assertRaises(StorageBackendError) as ctx:
            self.service.download_file(resource.id, self.project.id, self.developer.id)
        self.assertEqual(ctx.exception.resource_id, resource.id)


class TestPresignedUrl(ServiceTestCase):

    def test_presign_returns_url_and_expiry(self):
        resource = self.upload()
        presigned = self.service.generate_presigned_url(resource.id, self.project.id, self.developer.id)

        self.assertIn(resource.key, presigned.url)
        self.assertEqual(presigned.expires_in, 600)
        self.assertEqual(presigned.to_dict(), {'url': presigned.url, 'expiresIn': 600})

    def test_presign_requires_read_access(self):
        resource = self.upload()
        with self.assertRaises(AccessDeniedError):
            self.service.generate_presigned_url(resource.id, self.project.id, self.tester.id)
        self.assertEqual(self.blob_store.calls_for('presign'), [])

    def test_presign_deleted_resource(self):
        resource = self.upload()
        self.service.delete_file(resource.id, self.project.id, self.developer.id)
        with self.assertRaises(ResourceNotActiveError):
            self.service.generate_presigned_url(resource.id, self.project.id, self.developer.id)


class TestListing(ServiceTestCase):

    def test_lists_active_resources_newest_first(self):
        first = self.upload('one.txt', 10)
        second = self.upload('two.txt', 20)
        third = self.upload('three.txt', 30)
        self.service.delete_file(second.id, self.project.id, self.developer.id)

        page = self.service.get_project_files(self.project.id, self.viewer.id)

        self.assertEqual([item['id'] for item in page.items], [third.id, first.id])
        self.assertEqual(page.total, 2)
        self.assertEqual(page.items[0]['createdBy'], 'Dana')
        self.assertEqual(page.items[0]['contentType'], 'text/plain')

    def test_pagination(self):
        for i in range(5):
            self.upload(f"file{i}.txt", 10)

        page = self.service.get_project_files(self.project.id, self.developer.id, page=2, per_page=2)
        data = page.to_dict()

        self.assertEqual(len(data['resources']), 2)
        self.assertEqual(data['pagination']['total'], 5)
        self.assertEqual(data['pagination']['total_pages'], 3)
        self.assertTrue(data['pagination']['has_next'])
        self.assertTrue(data['pagination']['has_prev'])

    def test_per_page_is_capped(self):
        page = self.service.get_project_files(self.project.id, self.developer.id, per_page=500)
        self.assertEqual(page.per_page, 100)

    def test_unknown_project(self):
        with self.assertRaises(EntityNotFoundError):
            self.service.get_project_files(999, self.developer.id)


class TestDelete(ServiceTestCase):

    def test_creator_deletes(self):
        resource = self.upload(data=100)
        key = resource.key

        self.service.delete_file(resource.id, self.project.id, self.developer.id)

        stored = self.reload_resource(resource.id)
        self.assertEqual(stored.status, 'DELETED')
        self.assertIsNone(stored.key)
        self.assertEqual(stored.size, 0)
        self.assertEqual(stored.updated_by_id, self.developer.id)
        self.assertNotIn(key, self.blob_store.objects)
        self.assertEqual(self.reload_project(self.project.id).storage_size, 0)
        self.assert_resource_invariant(stored)

    def test_manager_deletes_someone_elses_file(self):
        resource = self.upload()
        self.service.delete_file(resource.id, self.project.id, self.manager.id)
        self.assertEqual(self.reload_resource(resource.id).updated_by_id, self.manager.id)

    def test_other_user_cannot_delete(self):
        resource = self.upload(roles=['TESTER'])
        with self.assertRaises(AccessDeniedError):
            self.service.delete_file(resource.id, self.project.id, self.tester.id)
        self.assertEqual(self.blob_store.calls_for('delete'), [])
        self.assertEqual(self.reload_resource(resource.id).status, 'ACTIVE')

    def test_delete_is_idempotent(self):
        resource = self.upload()
        self.service.delete_file(resource.id, self.project.id, self.developer.id)
        updated_at = self.reload_resource(resource.id).updated_at
        deletes = len(self.blob_store.calls_for('delete'))

        with patch.object(self.service.metadata, 'add') as add:
            self.service.delete_file(resource.id, self.project.id, self.developer.id)

        add.assert_not_called()
        self.assertEqual(len(self.blob_store.calls_for('delete')), deletes)
        self.assertEqual(self.reload_resource(resource.id).updated_at, updated_at)

    def test_blob_delete_failure_keeps_resource(self):
        resource = self.upload(data=100)
        self.blob_store.fail_on.add('delete')

        with self.assertRaises(StorageBackendError) as ctx:
            self.service.delete_file(resource.id, self.project.id, self.developer.id)

        self.assertEqual(ctx.exception.operation, 'delete')
        stored = self.reload_resource(resource.id)
        self.assertEqual(stored.status, 'ACTIVE')
        self.assertEqual(stored.size, 100)
        self.assertEqual(self.reload_project(self.project.id).storage_size, 100)

    def test_metadata_failure_after_blob_delete_logs_dangling_key(self):
        resource = self.upload(data=100)
        key = resource.key

        with patch.object(self.service.metadata, 'add', side_effect=SQLAlchemyError('update failed')):
            with self.assertLogs('filestore.services.orchestrator', level='ERROR') as logs:
                with self.assertRaises(SQLAlchemyError):
                    self.service.delete_file(resource.id, self.project.id, self.developer.id)

        self.assertTrue(any('Dangling resource' in line and key in line for line in logs.output))
        stored = self.reload_resource(resource.id)
        self.assertEqual(stored.status, 'ACTIVE')
        self.assertEqual(stored.key, key)
        self.assertNotIn(key, self.blob_store.objects)

    def test_unknown_resource(self):
        with self.assertRaises(ResourceNotFoundError):
            self.service.delete_file(12345, self.project.id, self.developer.id)


class TestBulkUpload(ServiceTestCase):

    def test_too_many_files_rejected_before_any_store_call(self):
        files = [make_upload(f"f{i}.txt", 10) for i in range(5)]

        with self.assertRaises(ValidationError) as ctx:
            self.service.bulk_upload(files, self.project.id, self.developer.id)

        self.assertEqual(str(ctx.exception), 'Maximum 3 files can be uploaded at once')
        self.assertEqual(self.blob_store.calls, [])
        self.assertEqual(Resource.query.count(), 0)

    def test_per_file_outcomes(self):
        files = [make_upload('a.txt', 10), make_upload('virus.exe', 10), make_upload('b.txt', 10)]

        outcomes = self.service.bulk_upload(files, self.project.id, self.developer.id)

        self.assertEqual([o.name for o in outcomes], ['a.txt', 'virus.exe', 'b.txt'])
        self.assertEqual([o.status for o in outcomes],
                         [UploadStatus.SUCCESS, UploadStatus.FAILED, UploadStatus.SUCCESS])
        self.assertIn('exe', outcomes[1].error)
        self.assertEqual(Resource.query.count(), 2)
        self.assertEqual(self.reload_project(self.project.id).storage_size, 20)

        failed = outcomes[1].to_dict()
        self.assertIsNone(failed['id'])
        self.assertEqual(failed['status'], 'FAILED')

    def test_quota_failure_is_per_file(self):
        files = [make_upload('a.bin', 700), make_upload('b.bin', 400)]
        outcomes = self.service.bulk_upload(files, self.project.id, self.developer.id)
        self.assertEqual([o.status for o in outcomes], [UploadStatus.SUCCESS, UploadStatus.FAILED])
        self.assert_usage_invariant(self.project.id)

    def test_internal_failures_are_reported_generically(self):
        files = [make_upload('a.txt', 10), make_upload('b.txt', 10)]
        failure = SQLAlchemyError('db host=10.0.0.5 password=hunter2')

        with patch.object(self.service.metadata, 'add', side_effect=failure):
            outcomes = self.service.bulk_upload(files, self.project.id, self.developer.id)

        for outcome in outcomes:
            self.assertEqual(outcome.status, UploadStatus.FAILED)
            self.assertEqual(outcome.error, GENERIC_ERROR_MESSAGE)
        self.assertEqual(self.blob_store.objects, {})

    def test_storage_failures_are_reported_generically(self):
        self.blob_store.fail_on.add('save')
        outcomes = self.service.bulk_upload([make_upload('a.txt', 10)], self.project.id, self.developer.id)
        self.assertEqual(outcomes[0].error, GENERIC_ERROR_MESSAGE)
        self.assertNotIn('simulated', outcomes[0].error)

    def test_roles_apply_to_every_file(self):
        files = [make_upload('a.txt', 10), make_upload('b.txt', 10)]
        outcomes = self.service.bulk_upload(files, self.project.id, self.developer.id, iter(['VIEWER']))
        for outcome in outcomes:
            self.assertEqual(outcome.resource.allowed_roles, ['VIEWER'])


if __name__ == '__main__':
    unittest.main()
