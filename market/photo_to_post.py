"""
Photo-to-Post: turn a photo into pre-filled listing drafts.

For each detected object (or the whole frame when no detector box is given)
the pipeline:
1. crops the object with 10% padding
2. scores its condition from edge clarity plus scratch and wear estimates
3. guesses a brand and a category by string similarity to known object names
4. extracts dominant colors
5. estimates a price from a base price, condition and brand multipliers
6. writes a title and description

Image work uses Pillow. Brand choice takes an injectable ``random.Random``
so results can be reproduced.
"""

import logging
import random
from decimal import ROUND_HALF_UP, Decimal

from PIL import Image, ImageFilter, ImageStat, UnidentifiedImageError

logger = logging.getLogger(__name__)

MAX_PHOTO_SIZE = 5 * 1024 * 1024
CROP_PADDING = 0.1
DEFAULT_LABEL = 'item'

# Edge mean (0-255) treated as perfectly sharp
EDGE_MEAN_FOR_FULL_CLARITY = 32.0
SCRATCHES_SCORE = 75
WEAR_MARKS_SCORE = 70

CONDITION_THRESHOLDS = [
    (95, 'new_in_box'),
    (90, 'new'),
    (80, 'like_new'),
    (70, 'excellent'),
    (60, 'very_good'),
    (50, 'good'),
    (40, 'fair'),
    (30, 'acceptable'),
    (20, 'poor'),
]
LOWEST_CONDITION = 'salvage'

LISTING_CONDITIONS = {
    'new_in_box': 'new',
    'new': 'new',
    'like_new': 'like_new',
    'excellent': 'like_new',
    'very_good': 'good',
    'good': 'good',
    'fair': 'fair',
    'acceptable': 'fair',
    'poor': 'poor',
    'salvage': 'poor',
}

BRANDS_BY_OBJECT = {
    'cell phone': ['Apple', 'Samsung', 'Google', 'Xiaomi', 'OnePlus'],
    'laptop': ['Apple', 'Dell', 'HP', 'Lenovo', 'Asus'],
    'television': ['Samsung', 'LG', 'Sony', 'TCL', 'Vizio'],
    'chair': ['IKEA', 'Herman Miller', 'Steelcase', 'West Elm', 'Wayfair'],
    'sofa': ['IKEA', 'Ashley Furniture', 'La-Z-Boy', 'Crate & Barrel', 'West Elm'],
    'book': ['Penguin', 'Random House', 'HarperCollins', 'Simon & Schuster', 'Macmillan'],
    'watch': ['Rolex', 'Casio', 'Seiko', 'Timex', 'Fossil'],
    'handbag': ['Coach', 'Michael Kors', 'Louis Vuitton', 'Kate Spade', 'Gucci'],
}

CATEGORIES_BY_OBJECT = {
    'cell phone': ('Electronics', 'Smartphones'),
    'laptop': ('Electronics', 'Computers'),
    'television': ('Electronics', 'TVs'),
    'chair': ('Furniture', 'Seating'),
    'sofa': ('Furniture', 'Seating'),
    'book': ('Media', 'Books'),
    'watch': ('Fashion', 'Accessories'),
    'handbag': ('Fashion', 'Bags'),
}
FALLBACK_CATEGORY = ('Other', '')

BASE_PRICES = {
    'smartphone': 300,
    'cell phone': 300,
    'laptop': 500,
    'tablet': 200,
    'camera': 250,
    'headphones': 80,
    'speaker': 100,
    'watch': 150,
    'jewelry': 200,
    'clothing': 40,
    'shoes': 60,
    'furniture': 200,
    'chair': 100,
    'sofa': 300,
    'book': 15,
    'toy': 25,
    'tool': 50,
    'kitchenware': 30,
    'artwork': 100,
    'bicycle': 150,
    'musical instrument': 200,
}
DEFAULT_BASE_PRICE = 50

CONDITION_MULTIPLIERS = {
    'new_in_box': Decimal('1.0'),
    'new': Decimal('0.9'),
    'like_new': Decimal('0.8'),
    'excellent': Decimal('0.7'),
    'very_good': Decimal('0.6'),
    'good': Decimal('0.5'),
    'fair': Decimal('0.4'),
    'acceptable': Decimal('0.3'),
    'poor': Decimal('0.2'),
    'salvage': Decimal('0.1'),
}
DEFAULT_CONDITION_MULTIPLIER = Decimal('0.5')
KNOWN_BRAND_MULTIPLIER = Decimal('1.2')

PLACEHOLDER_MATERIALS = ['plastic', 'metal']
PLACEHOLDER_FEATURES = ['portable', 'lightweight']

NAMED_COLORS = {
    'black': (0, 0, 0),
    'white': (255, 255, 255),
    'gray': (128, 128, 128),
    'red': (200, 30, 30),
    'orange': (240, 140, 20),
    'yellow': (240, 220, 40),
    'green': (40, 160, 60),
    'blue': (40, 80, 200),
    'purple': (130, 50, 160),
    'pink': (240, 150, 190),
    'brown': (120, 75, 40),
}


class PhotoAnalysisError(ValueError):
    """Raised when the uploaded file cannot be analysed as an image."""


def string_similarity(first, second):
    """
    Normalized Levenshtein similarity between two strings.

    Returns:
        float: 1.0 for identical strings, 0.0 for nothing in common
    """
    if not first and not second:
        return 1.0

    previous = list(range(len(second) + 1))
    for i, first_char in enumerate(first, start=1):
        current = [i]
        for j, second_char in enumerate(second, start=1):
            substitution = previous[j - 1] + (0 if first_char == second_char else 1)
            current.append(min(current[j - 1] + 1, previous[j] + 1, substitution))
        previous = current

    return 1 - previous[-1] / max(len(first), len(second))


def closest_match(name, candidates):
    """
    Find the candidate most similar to ``name``.

    Ties keep the first candidate. A candidate is only chosen when its
    similarity is above zero.

    Returns:
        tuple: (candidate or None, similarity)
    """
    name = name.lower()
    best, best_similarity = None, 0.0
    for candidate in candidates:
        similarity = string_similarity(name, candidate)
        if similarity > best_similarity:
            best, best_similarity = candidate, similarity
    return best, best_similarity


def open_image(uploaded_file):
    """
    Open an uploaded file as an RGB Pillow image.

    Raises:
        PhotoAnalysisError: If the file is too large or not an image
    """
    size = getattr(uploaded_file, 'size', None)
    if size is not None and size > MAX_PHOTO_SIZE:
        raise PhotoAnalysisError('Image file size cannot exceed 5MB.')

    if hasattr(uploaded_file, 'seek'):
        uploaded_file.seek(0)

    try:
        image = Image.open(uploaded_file)
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise PhotoAnalysisError('Uploaded file is not a valid image.') from e

    return image.convert('RGB')


def crop_to_box(image, box=None, padding=CROP_PADDING):
    """
    Crop ``image`` to ``box`` plus padding on each side, clamped to the image.

    Args:
        image: Pillow image
        box: (x_min, y_min, x_max, y_max) in pixels, or None for the whole frame
        padding: Fraction of the box size added on each side

    Returns:
        PIL.Image.Image
    """
    if box is None:
        return image

    x_min, y_min, x_max, y_max = box
    pad_x = round((x_max - x_min) * padding)
    pad_y = round((y_max - y_min) * padding)

    left = max(0, x_min - pad_x)
    top = max(0, y_min - pad_y)
    right = min(image.width, x_max + pad_x)
    bottom = min(image.height, y_max + pad_y)

    if right <= left or bottom <= top:
        return image
    return image.crop((left, top, right, bottom))


def measure_clarity(image):
    """Clarity score 0-100 from the mean edge strength of the grayscale image."""
    edges = image.convert('L').filter(ImageFilter.FIND_EDGES)
    edge_mean = ImageStat.Stat(edges).mean[0]
    return round(min(100.0, edge_mean / EDGE_MEAN_FOR_FULL_CLARITY * 100), 2)


def map_score_to_condition(score):
    for threshold, condition in CONDITION_THRESHOLDS:
        if score >= threshold:
            return condition
    return LOWEST_CONDITION


def assess_condition(image):
    """
    Score the condition of an object crop.

    Scratch and wear detection are fixed estimates; clarity comes from the
    image. Score = 0.4 * clarity + 0.3 * scratches + 0.3 * wear.
    """
    clarity = measure_clarity(image)
    score = round(clarity * 0.4 + SCRATCHES_SCORE * 0.3 + WEAR_MARKS_SCORE * 0.3, 2)
    return {
        'condition': map_score_to_condition(score),
        'condition_score': score,
        'condition_details': {
            'clarity': clarity,
            'scratches': SCRATCHES_SCORE,
            'wear_marks': WEAR_MARKS_SCORE,
        },
    }


def recognize_brand(label, rng=None):
    """Pick a plausible brand for the object category closest to ``label``."""
    rng = rng or random
    category, _similarity = closest_match(label, BRANDS_BY_OBJECT)
    if category is None:
        return 'unknown'
    return rng.choice(BRANDS_BY_OBJECT[category])


def dominant_colors(image, count=3):
    """
    Name the most common colors of ``image``.

    The image is reduced to a small adaptive palette and each palette entry is
    mapped to the nearest named color.
    """
    thumbnail = image.copy()
    thumbnail.thumbnail((64, 64))
    quantized = thumbnail.quantize(colors=8)
    palette = quantized.getpalette() or []

    names = []
    for _pixels, index in sorted(quantized.getcolors() or [], reverse=True):
        rgb = tuple(palette[index * 3:index * 3 + 3])
        name = min(
            NAMED_COLORS,
            key=lambda color: sum((a - b) ** 2 for a, b in zip(NAMED_COLORS[color], rgb))
        )
        if name not in names:
            names.append(name)
        if len(names) == count:
            break
    return names


def detect_features(image, label):
    """Category, subcategory, colors and material/feature hints for ``label``."""
    match, _similarity = closest_match(label, CATEGORIES_BY_OBJECT)
    category, subcategory = CATEGORIES_BY_OBJECT.get(match, FALLBACK_CATEGORY)
    return {
        'category': category,
        'subcategory': subcategory,
        'colors': dominant_colors(image),
        'materials': list(PLACEHOLDER_MATERIALS),
        'detected_features': list(PLACEHOLDER_FEATURES),
    }


def estimate_price(label, condition, brand):
    """
    Estimate a price in whole currency units.

    price = base price x condition multiplier x brand multiplier

    Confidence is 'high' for a close category match with a known brand, 'low'
    for a weak match, 'medium' otherwise.
    """
    match, similarity = closest_match(label, BASE_PRICES)
    base_price = Decimal(BASE_PRICES.get(match, DEFAULT_BASE_PRICE))
    condition_multiplier = CONDITION_MULTIPLIERS.get(condition, DEFAULT_CONDITION_MULTIPLIER)
    brand_known = brand != 'unknown'
    brand_multiplier = KNOWN_BRAND_MULTIPLIER if brand_known else Decimal('1.0')

    price = (base_price * condition_multiplier * brand_multiplier).quantize(
        Decimal('1'), rounding=ROUND_HALF_UP
    )

    if similarity > 0.8 and brand_known:
        confidence = 'high'
    elif similarity < 0.5 or condition == 'unknown':
        confidence = 'low'
    else:
        confidence = 'medium'

    brand_part = f'{brand} ' if brand_known else ''
    return {
        'price': int(price),
        'explanation': f'Estimated based on {condition} condition {brand_part}{label}.',
        'confidence': confidence,
    }


def format_condition(condition):
    """'like_new' -> 'Like New'"""
    return ' '.join(word.capitalize() for word in condition.split('_'))


def generate_content(label, brand, condition, features):
    """Write a listing title and description for one object."""
    brand_known = brand != 'unknown'
    colors = features.get('colors') or []

    title = f'{brand} ' if brand_known else ''
    title += label[:1].upper() + label[1:]
    if colors:
        title += f' - {colors[0].capitalize()}'

    brand_part = f'{brand} ' if brand_known else ''
    description = f'{format_condition(condition)} condition {brand_part}{label}. '
    if features.get('detected_features'):
        description += f"Features include: {', '.join(features['detected_features'])}. "
    if features.get('materials'):
        description += f"Made of {' and '.join(features['materials'])}. "
    if colors:
        description += f"Color: {', '.join(colors)}. "
    description += 'Please contact me with any questions.'

    return {'title': title[:100], 'description': description}


def analyze_object(image, label=DEFAULT_LABEL, box=None, rng=None):
    """
    Run the full pipeline for one object.

    Returns:
        dict: Listing draft with condition, brand, category, price and text
    """
    label = (label or DEFAULT_LABEL).strip().lower() or DEFAULT_LABEL
    crop = crop_to_box(image, box)

    condition_data = assess_condition(crop)
    condition = condition_data['condition']
    brand = recognize_brand(label, rng)
    features = detect_features(crop, label)
    price_data = estimate_price(label, condition, brand)
    content = generate_content(label, brand, condition, features)

    return {
        'label': label,
        'box': list(box) if box else [0, 0, image.width, image.height],
        'condition': condition,
        'listing_condition': LISTING_CONDITIONS[condition],
        'condition_score': condition_data['condition_score'],
        'condition_details': condition_data['condition_details'],
        'brand': brand,
        'category': features['category'],
        'subcategory': features['subcategory'],
        'features': features,
        'price': price_data['price'],
        'price_explanation': price_data['explanation'],
        'price_confidence': price_data['confidence'],
        'title': content['title'],
        'description': content['description'],
    }


def analyze_photo(uploaded_file, labels=None, boxes=None, rng=None):
    """
    Analyse a photo and return one listing draft per object.

    Args:
        uploaded_file: File-like object holding the image
        labels: Object names; defaults to a single generic item
        boxes: Optional pixel boxes, one per label
        rng: random.Random used for brand choice

    Returns:
        dict: {'image_width', 'image_height', 'detected_objects': [...]}

    Raises:
        PhotoAnalysisError: If the upload is not a usable image
    """
    image = open_image(uploaded_file)
    labels = [label for label in (labels or []) if label and label.strip()] or [DEFAULT_LABEL]
    boxes = list(boxes or [])

    detected = []
    for index, label in enumerate(labels):
        box = boxes[index] if index < len(boxes) else None
        draft = analyze_object(image, label, box, rng)
        draft['item_index'] = index
        detected.append(draft)

    logger.info(
        f"Photo analysed. Size: {image.width}x{image.height}, Objects: {len(detected)}"
    )

    return {
        'image_width': image.width,
        'image_height': image.height,
        'detected_objects': detected,
    }
