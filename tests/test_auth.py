"""
Tests for registration, e-mail verification, login, token refresh, logout
and password reset.

Test Coverage:
- Registration validation and verification e-mail
- Verification and reset tokens (valid, unknown, expired)
- Login with generic errors and JWT claims
- Refresh token rotation and blacklisting
- Password reset without user enumeration
"""

from datetime import timedelta

import jwt
from django.conf import settings
from django.contrib.auth import get_user_model
from django.core import mail
from django.test import TestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from tests.helpers import authenticate, create_user

User = get_user_model()


class RegistrationTests(TestCase):
    """Test suite for POST /api/auth/register/."""

    def setUp(self):
        self.client = APIClient()
        self.url = reverse('user_register')
        self.valid_data = {
            'name': 'Jane Doe',
            'email': 'Jane@Example.com',
            'password': 'SecurePass123!',
            'confirm_password': 'SecurePass123!',
            'location': 'Boston, MA',
        }

    def test_register_creates_unverified_user(self):
        response = self.client.post(self.url, self.valid_data, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        user = User.objects.get(email='jane@example.com')
        self.assertFalse(user.is_verified)
        self.assertEqual(user.name, 'Jane Doe')
        self.assertEqual(len(user.verification_token), 64)
        self.assertGreater(user.verification_token_expiry, timezone.now() + timedelta(hours=23))
        self.assertNotIn('password', response.data)
        self.assertFalse(response.data['is_verified'])

    def test_register_sends_verification_email(self):
        self.client.post(self.url, self.valid_data, format='json')

        user = User.objects.get(email='jane@example.com')
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ['jane@example.com'])
        self.assertIn(user.verification_token, mail.outbox[0].body)

    def test_register_duplicate_email_case_insensitive(self):
        create_user('jane@example.com')

        response = self.client.post(self.url, self.valid_data, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('email', response.data)

    def test_register_password_mismatch(self):
        self.valid_data['confirm_password'] = 'Different123!'

        response = self.client.post(self.url, self.valid_data, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('confirm_password', response.data)

    def test_register_weak_password(self):
        self.valid_data['password'] = self.valid_data['confirm_password'] = '123'

        response = self.client.post(self.url, self.valid_data, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('password', response.data)

    def test_register_requires_name(self):
        del self.valid_data['name']

        response = self.client.post(self.url, self.valid_data, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('name', response.data)

    def test_register_invalid_phone_number(self):
        self.valid_data['phone_number'] = 'not-a-phone'

        response = self.client.post(self.url, self.valid_data, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('phone_number', response.data)


class VerifyEmailTests(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.url = reverse('verify_email')
        self.user = create_user('verify@example.com')
        self.token = self.user.generate_verification_token()
        self.user.save()

    def test_valid_token_verifies_user(self):
        response = self.client.post(self.url, {'token': self.token}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.user.refresh_from_db()
        self.assertTrue(self.user.is_verified)
        self.assertEqual(self.user.verification_token, '')

    def test_token_cannot_be_reused(self):
        self.client.post(self.url, {'token': self.token}, format='json')

        response = self.client.post(self.url, {'token': self.token}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_unknown_token_rejected(self):
        response = self.client.post(self.url, {'token': 'a' * 64}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['detail'], 'Invalid or expired verification token.')

    def test_expired_token_rejected(self):
        self.user.verification_token_expiry = timezone.now() - timedelta(minutes=1)
        self.user.save()

        response = self.client.post(self.url, {'token': self.token}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.user.refresh_from_db()
        self.assertFalse(self.user.is_verified)


class LoginTests(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.url = reverse('user_login')
        self.user = create_user('login@example.com', password='SecurePass123!', name='Login User')

    def test_login_returns_tokens_and_user(self):
        response = self.client.post(
            self.url, {'email': 'login@example.com', 'password': 'SecurePass123!'}, format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('access', response.data)
        self.assertIn('refresh', response.data)
        self.assertEqual(response.data['user']['email'], 'login@example.com')
        self.assertEqual(response.data['user']['name'], 'Login User')

        decoded = jwt.decode(
            response.data['access'],
            settings.SECRET_KEY,
            algorithms=['HS256']
        )
        self.assertEqual(str(decoded['user_id']), str(self.user.id))
        self.assertEqual(decoded['token_type'], 'access')

    def test_login_is_case_insensitive(self):
        response = self.client.post(
            self.url, {'email': 'LOGIN@EXAMPLE.COM', 'password': 'SecurePass123!'}, format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_wrong_password_and_unknown_user_share_message(self):
        wrong_password = self.client.post(
            self.url, {'email': 'login@example.com', 'password': 'wrong'}, format='json'
        )
        unknown_user = self.client.post(
            self.url, {'email': 'nobody@example.com', 'password': 'wrong'}, format='json'
        )

        self.assertEqual(wrong_password.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(unknown_user.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(wrong_password.data, unknown_user.data)

    def test_inactive_user_cannot_login(self):
        self.user.is_active = False
        self.user.save()

        response = self.client.post(
            self.url, {'email': 'login@example.com', 'password': 'SecurePass123!'}, format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_missing_fields(self):
        response = self.client.post(self.url, {'email': 'login@example.com'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('password', response.data)

    def test_get_not_allowed(self):
        response = self.client.get(self.url)

        self.assertEqual(response.status_code, status.HTTP_405_METHOD_NOT_ALLOWED)

    def test_login_is_rate_limited(self):
        for _ in range(5):
            self.client.post(self.url, {'email': 'login@example.com', 'password': 'wrong'}, format='json')

        response = self.client.post(
            self.url, {'email': 'login@example.com', 'password': 'SecurePass123!'}, format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_429_TOO_MANY_REQUESTS)


class TokenRefreshAndLogoutTests(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.user = create_user('tokens@example.com')
        self.refresh = str(RefreshToken.for_user(self.user))

    def test_refresh_rotates_token(self):
        response = self.client.post(reverse('token_refresh'), {'refresh': self.refresh}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('access', response.data)
        self.assertIn('refresh', response.data)
        self.assertNotEqual(response.data['refresh'], self.refresh)

    def test_rotated_token_is_blacklisted(self):
        self.client.post(reverse('token_refresh'), {'refresh': self.refresh}, format='json')

        response = self.client.post(reverse('token_refresh'), {'refresh': self.refresh}, format='json')

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_refresh_with_garbage_token(self):
        response = self.client.post(reverse('token_refresh'), {'refresh': 'not.a.token'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_logout_blacklists_refresh_token(self):
        authenticate(self.client, self.user)

        response = self.client.post(reverse('user_logout'), {'refresh': self.refresh}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        refresh_response = self.client.post(reverse('token_refresh'), {'refresh': self.refresh}, format='json')
        self.assertEqual(refresh_response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_logout_requires_authentication(self):
        response = self.client.post(reverse('user_logout'), {'refresh': self.refresh}, format='json')

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_logout_rejects_someone_elses_token(self):
        other = create_user('other@example.com')
        authenticate(self.client, other)

        response = self.client.post(reverse('user_logout'), {'refresh': self.refresh}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class PasswordResetTests(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.user = create_user('reset@example.com', password='OldPass123!')

    def test_request_for_known_email_sends_link(self):
        response = self.client.post(reverse('password_reset'), {'email': 'reset@example.com'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.user.refresh_from_db()
        self.assertEqual(len(self.user.reset_password_token), 64)
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn(self.user.reset_password_token, mail.outbox[0].body)

    def test_request_for_unknown_email_looks_the_same(self):
        known = self.client.post(reverse('password_reset'), {'email': 'reset@example.com'}, format='json')
        unknown = self.client.post(reverse('password_reset'), {'email': 'ghost@example.com'}, format='json')

        self.assertEqual(unknown.status_code, status.HTTP_200_OK)
        self.assertEqual(known.data, unknown.data)
        self.assertEqual(len(mail.outbox), 1)

    def test_confirm_sets_new_password(self):
        token = self.user.generate_password_reset_token()
        self.user.save()

        response = self.client.post(reverse('password_reset_confirm'), {
            'token': token,
            'password': 'BrandNew456!',
            'confirm_password': 'BrandNew456!',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password('BrandNew456!'))
        self.assertEqual(self.user.reset_password_token, '')

    def test_confirm_with_expired_token(self):
        token = self.user.generate_password_reset_token()
        self.user.reset_password_token_expiry = timezone.now() - timedelta(seconds=1)
        self.user.save()

        response = self.client.post(reverse('password_reset_confirm'), {
            'token': token,
            'password': 'BrandNew456!',
            'confirm_password': 'BrandNew456!',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password('OldPass123!'))

    def test_confirm_password_mismatch(self):
        token = self.user.generate_password_reset_token()
        self.user.save()

        response = self.client.post(reverse('password_reset_confirm'), {
            'token': token,
            'password': 'BrandNew456!',
            'confirm_password': 'Other456!',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('confirm_password', response.data)
