"""
Tests for the Photo-to-Post pipeline and its endpoint.
"""

import random
from io import BytesIO

from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import SimpleTestCase, TestCase
from django.urls import reverse
from PIL import Image
from rest_framework import status
from rest_framework.test import APIClient

from market import photo_to_post
from market.models import AnalyticsEvent
from tests.helpers import authenticate, create_user, make_image_file, make_oversized_image_file


def checkerboard(size=64):
    image = Image.new('RGB', (size, size), 'black')
    pixels = image.load()
    for x in range(size):
        for y in range(size):
            if (x + y) % 2 == 0:
                pixels[x, y] = (255, 255, 255)
    return image


def as_upload(image, name='photo.png'):
    buffer = BytesIO()
    image.save(buffer, 'PNG')
    return SimpleUploadedFile(name, buffer.getvalue(), content_type='image/png')


class PipelineTests(SimpleTestCase):

    def test_flat_image_has_no_clarity(self):
        result = photo_to_post.assess_condition(Image.new('RGB', (50, 50), 'black'))

        self.assertEqual(result['condition_details']['clarity'], 0)
        self.assertEqual(result['condition_score'], 43.5)
        self.assertEqual(result['condition'], 'fair')

    def test_sharp_image_scores_like_new(self):
        result = photo_to_post.assess_condition(checkerboard())

        self.assertEqual(result['condition_details']['clarity'], 100)
        self.assertEqual(result['condition_score'], 83.5)
        self.assertEqual(result['condition'], 'like_new')

    def test_condition_thresholds(self):
        self.assertEqual(photo_to_post.map_score_to_condition(95), 'new_in_box')
        self.assertEqual(photo_to_post.map_score_to_condition(89.99), 'like_new')
        self.assertEqual(photo_to_post.map_score_to_condition(50), 'good')
        self.assertEqual(photo_to_post.map_score_to_condition(5), 'salvage')

    def test_string_similarity(self):
        self.assertEqual(photo_to_post.string_similarity('chair', 'chair'), 1.0)
        self.assertEqual(photo_to_post.string_similarity('', ''), 1.0)
        self.assertAlmostEqual(photo_to_post.string_similarity('chairs', 'chair'), 5 / 6)
        self.assertEqual(photo_to_post.closest_match('Laptop', ['chair', 'laptop']), ('laptop', 1.0))

    def test_price_for_known_object(self):
        result = photo_to_post.estimate_price('cell phone', 'fair', 'Apple')

        # 300 base x 0.4 fair x 1.2 known brand
        self.assertEqual(result['price'], 144)
        self.assertEqual(result['confidence'], 'high')

    def test_price_without_brand(self):
        result = photo_to_post.estimate_price('cell phone', 'good', 'unknown')

        self.assertEqual(result['price'], 150)
        self.assertEqual(result['confidence'], 'medium')

    def test_crop_adds_padding_and_clamps(self):
        image = Image.new('RGB', (200, 100))

        self.assertEqual(photo_to_post.crop_to_box(image, (50, 20, 150, 80)).size, (120, 72))
        self.assertEqual(photo_to_post.crop_to_box(image, (0, 0, 200, 100)).size, (200, 100))

    def test_brand_choice_is_reproducible(self):
        first = photo_to_post.recognize_brand('laptop', random.Random(7))
        second = photo_to_post.recognize_brand('laptop', random.Random(7))

        self.assertEqual(first, second)
        self.assertIn(first, photo_to_post.BRANDS_BY_OBJECT['laptop'])

    def test_analyze_photo_drafts(self):
        upload = as_upload(Image.new('RGB', (80, 60), 'black'))

        result = photo_to_post.analyze_photo(upload, labels=['cell phone'], rng=random.Random(1))

        self.assertEqual((result['image_width'], result['image_height']), (80, 60))
        draft, = result['detected_objects']
        self.assertEqual(draft['label'], 'cell phone')
        self.assertEqual(draft['box'], [0, 0, 80, 60])
        self.assertEqual(draft['condition'], 'fair')
        self.assertEqual(draft['listing_condition'], 'fair')
        self.assertEqual(draft['category'], 'Electronics')
        self.assertEqual(draft['subcategory'], 'Smartphones')
        self.assertEqual(draft['price'], 144)
        self.assertIn('black', draft['features']['colors'])
        self.assertTrue(draft['title'].startswith(draft['brand']))
        self.assertIn('Fair condition', draft['description'])
        self.assertEqual(draft['item_index'], 0)

    def test_one_draft_per_label(self):
        result = photo_to_post.analyze_photo(
            as_upload(checkerboard()), labels=['chair', 'book'], rng=random.Random(3)
        )

        self.assertEqual([d['label'] for d in result['detected_objects']], ['chair', 'book'])
        self.assertEqual([d['item_index'] for d in result['detected_objects']], [0, 1])

    def test_pipeline_refuses_oversized_file(self):
        with self.assertRaises(photo_to_post.PhotoAnalysisError):
            photo_to_post.analyze_photo(make_oversized_image_file())

    def test_not_an_image(self):
        upload = SimpleUploadedFile('photo.png', b'definitely not a png', content_type='image/png')

        with self.assertRaises(photo_to_post.PhotoAnalysisError):
            photo_to_post.analyze_photo(upload)


class PhotoToPostEndpointTests(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.url = reverse('photo_to_post')
        self.user = create_user('seller@example.com')

    def test_returns_drafts_and_records_usage(self):
        authenticate(self.client, self.user)

        response = self.client.post(
            self.url, {'image': make_image_file(color='black'), 'labels': 'cell phone, chair'},
            format='multipart'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data['detected_objects']), 2)
        self.assertEqual(response.data['detected_objects'][0]['label'], 'cell phone')
        self.assertTrue(AnalyticsEvent.objects.filter(
            user=self.user, category='photo_to_post', action='analyze'
        ).exists())

    def test_without_labels_uses_whole_frame(self):
        authenticate(self.client, self.user)

        response = self.client.post(self.url, {'image': make_image_file()}, format='multipart')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['detected_objects'][0]['label'], 'item')

    def test_image_required(self):
        authenticate(self.client, self.user)

        response = self.client.post(self.url, {}, format='multipart')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('image', response.data)

    def test_image_over_five_megabytes_rejected(self):
        authenticate(self.client, self.user)

        response = self.client.post(self.url, {'image': make_oversized_image_file()}, format='multipart')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('5MB', str(response.data['image']))
        self.assertFalse(AnalyticsEvent.objects.filter(category='photo_to_post').exists())

    def test_requires_authentication(self):
        response = self.client.post(self.url, {'image': make_image_file()}, format='multipart')

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
