"""
Custom validators for marketplace models.
"""

import re

from django.core.exceptions import ValidationError

MAX_IMAGE_SIZE = 5 * 1024 * 1024
VALID_IMAGE_EXTENSIONS = ['jpg', 'jpeg', 'png', 'webp']
VALID_IMAGE_CONTENT_TYPES = ['image/jpeg', 'image/png', 'image/webp']


def validate_phone_number(value):
    """
    Validate phone number format.

    Accepts international formats with optional country codes, spaces, dashes
    and parentheses. Requires at least 10 digits.

    Valid formats:
    - +1-234-567-8900
    - +44 20 7946 0958
    - 234-567-8900

    Args:
        value: Phone number string to validate

    Raises:
        ValidationError: If phone number format is invalid
    """
    if not value:
        return

    if not re.match(r'^[\d\s\-\+\(\)]+$', value):
        raise ValidationError(
            'Phone number can only contain digits, spaces, dashes, parentheses, and plus sign.',
            code='invalid_phone_chars'
        )

    digits = re.sub(r'\D', '', value)

    if len(digits) < 10:
        raise ValidationError(
            'Phone number must contain at least 10 digits.',
            code='phone_too_short'
        )

    if len(set(digits)) == 1:
        raise ValidationError(
            'Phone number cannot be all the same digit.',
            code='invalid_phone_pattern'
        )


def validate_image_file(image):
    """
    Validate an uploaded image used for profiles and listings.

    Checks:
    - File size (max 5MB)
    - File extension (jpg, jpeg, png, webp)
    - Declared content type, when the upload carries one

    Args:
        image: UploadedFile or FieldFile object

    Raises:
        ValidationError: If image is invalid
    """
    if not image:
        return

    if image.size > MAX_IMAGE_SIZE:
        raise ValidationError(
            f'Image file size cannot exceed 5MB. Current size: {image.size / (1024 * 1024):.2f}MB',
            code='image_too_large'
        )

    file_name = image.name.lower()
    if not any(file_name.endswith(f'.{ext}') for ext in VALID_IMAGE_EXTENSIONS):
        raise ValidationError(
            f'Invalid image format. Allowed formats: {", ".join(VALID_IMAGE_EXTENSIONS)}',
            code='invalid_image_format'
        )

    content_type = getattr(image, 'content_type', None)
    if content_type and content_type not in VALID_IMAGE_CONTENT_TYPES:
        raise ValidationError(
            f'Invalid image content type: {content_type}',
            code='invalid_content_type'
        )
