import logging

import cloudinary
import cloudinary.uploader

logger = logging.getLogger(__name__)


class FileUploadError(Exception):
    pass


class CloudinaryFileStore:
    """Archives uploaded files in Cloudinary and hands back their public URLs"""

    def __init__(self, cloud_name, api_key, api_secret):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret

    def configure(self):
        cloudinary.config(
            cloud_name=self.cloud_name,
            api_key=self.api_key,
            api_secret=self.api_secret,
            secure=True,
        )

    def upload(self, file, public_id, folder=None):
        """
        Upload a file to Cloudinary and return its URL.

        Args:
            file: The uploaded file from request.FILES
            public_id: Name to store the file under, extension included
            folder: Optional folder name to organize uploads in Cloudinary

        Returns:
            str: The secure URL of the uploaded file

        Raises:
            FileUploadError: If the upload fails or Cloudinary returns no URL
        """
        try:
            self.configure()

            # Slide decks are stored as-is, not as images or video
            upload_options = {
                'resource_type': 'raw',
                'public_id': public_id,
                'overwrite': False,
                'unique_filename': False,
            }
            if folder:
                upload_options['folder'] = folder

            result = cloudinary.uploader.upload(file, **upload_options)
        except Exception as e:
            raise FileUploadError(f"Failed to upload file to Cloudinary: {str(e)}") from e

        url = result.get('secure_url')
        if not url:
            raise FileUploadError("Cloudinary did not return a URL for the uploaded file")
        return url

    def delete(self, file_url):
        """
        Delete a raw file from Cloudinary using its URL.

        Returns:
            bool: True if deletion was successful, False otherwise
        """
        public_id = self.public_id_from_url(file_url)
        if not public_id:
            return False
        try:
            self.configure()
            result = cloudinary.uploader.destroy(public_id, resource_type='raw')
        except Exception as e:
            logger.error(f"Failed to delete {file_url} from Cloudinary: {str(e)}")
            return False
        return result.get('result') == 'ok'

    @staticmethod
    def public_id_from_url(file_url):
        # https://res.cloudinary.com/{cloud_name}/raw/upload/v{version}/{public_id}
        if not file_url or 'cloudinary.com' not in file_url or '/upload/' not in file_url:
            return None
        path = file_url.split('/upload/', 1)[1]
        first, _, rest = path.partition('/')
        if rest and first.startswith('v') and first[1:].isdigit():
            path = rest
        # raw public ids keep their extension
        return path or None
