import os
from uuid import uuid4

from werkzeug.utils import secure_filename

from .errors import ServiceError, ValidationError

ALLOWED_IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}


class ImageStorage:
    """Product images kept as plain files under one upload folder."""

    def __init__(self, folder: str, allowed_extensions=None):
        self.folder = folder
        self.allowed_extensions = allowed_extensions or ALLOWED_IMAGE_EXTENSIONS
        os.makedirs(self.folder, exist_ok=True)

    def allowed(self, filename: str) -> bool:
        extension = os.path.splitext(filename)[1].lower().lstrip(".")
        return bool(extension) and extension in self.allowed_extensions

    def save(self, image_file) -> str:
        if not image_file or not getattr(image_file, "filename", ""):
            raise ValidationError("An image file is required.")

        original_filename = secure_filename(image_file.filename)
        if not original_filename:
            raise ValidationError("Please choose a valid file name.")

        if not self.allowed(original_filename):
            raise ValidationError(
                "Invalid file type. Only JPEG, PNG, GIF and WEBP files are allowed."
            )

        extension = os.path.splitext(original_filename)[1].lower()
        unique_filename = f"{uuid4().hex}{extension}"
        try:
            image_file.save(os.path.join(self.folder, unique_filename))
        except OSError:
            raise ServiceError("We could not store the uploaded image. Please try again.")
        return unique_filename

    def remove(self, filename):
        if not filename:
            return
        # only names this storage handed out, never a path or URL
        if os.path.basename(str(filename)) != str(filename):
            return
        try:
            os.remove(os.path.join(self.folder, str(filename)))
        except FileNotFoundError:
            return
