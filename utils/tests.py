from unittest import mock

from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import SimpleTestCase

from .cloudinary_utils import CloudinaryFileStore, FileUploadError

RAW_URL = 'https://res.cloudinary.com/vnest/raw/upload/v1760000000/applications/21BCE1234_1760000000000.pptx'


class CloudinaryFileStoreTest(SimpleTestCase):

    def setUp(self):
        self.store = CloudinaryFileStore(cloud_name='vnest', api_key='key', api_secret='secret')
        self.deck = SimpleUploadedFile('deck.pptx', b'slides')

    @mock.patch('cloudinary.uploader.upload', return_value={'secure_url': RAW_URL})
    def test_upload_returns_secure_url(self, upload):
        url = self.store.upload(self.deck, public_id='21BCE1234_1760000000000.pptx', folder='applications')
        self.assertEqual(url, RAW_URL)
        upload.assert_called_once_with(
            self.deck,
            resource_type='raw',
            public_id='21BCE1234_1760000000000.pptx',
            overwrite=False,
            unique_filename=False,
            folder='applications',
        )

    @mock.patch('cloudinary.uploader.upload', side_effect=Exception('401 Invalid API key'))
    def test_upload_error_is_wrapped(self, upload):
        with self.assertRaisesMessage(FileUploadError, '401 Invalid API key'):
            self.store.upload(self.deck, public_id='x.pptx')

    @mock.patch('cloudinary.uploader.upload', return_value={})
    def test_missing_url_is_an_error(self, upload):
        with self.assertRaises(FileUploadError):
            self.store.upload(self.deck, public_id='x.pptx')

    def test_public_id_from_url(self):
        self.assertEqual(
            CloudinaryFileStore.public_id_from_url(RAW_URL),
            'applications/21BCE1234_1760000000000.pptx',
        )
        self.assertIsNone(CloudinaryFileStore.public_id_from_url('https://drive.google.com/file/d/1'))
        self.assertIsNone(CloudinaryFileStore.public_id_from_url(None))

    @mock.patch('cloudinary.uploader.destroy', return_value={'result': 'ok'})
    def test_delete_uses_raw_resource_type(self, destroy):
        self.assertTrue(self.store.delete(RAW_URL))
        destroy.assert_called_once_with('applications/21BCE1234_1760000000000.pptx', resource_type='raw')

    @mock.patch('cloudinary.uploader.destroy', side_effect=Exception('timeout'))
    def test_delete_failure_returns_false(self, destroy):
        with self.assertLogs('utils.cloudinary_utils', level='ERROR'):
            self.assertFalse(self.store.delete(RAW_URL))
