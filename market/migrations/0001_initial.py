import django.contrib.auth.models
import django.contrib.auth.validators
import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from decimal import Decimal
from django.conf import settings
from django.db import migrations, models

import market.models
import market.validators


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('auth', '0012_alter_user_first_name_max_length'),
    ]

    operations = [
        migrations.CreateModel(
            name='User',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('password', models.CharField(max_length=128, verbose_name='password')),
                ('last_login', models.DateTimeField(blank=True, null=True, verbose_name='last login')),
                ('is_superuser', models.BooleanField(default=False, help_text='Designates that this user has all permissions without explicitly assigning them.', verbose_name='superuser status')),
                ('username', models.CharField(error_messages={'unique': 'A user with that username already exists.'}, help_text='Required. 150 characters or fewer. Letters, digits and @/./+/-/_ only.', max_length=150, unique=True, validators=[django.contrib.auth.validators.UnicodeUsernameValidator()], verbose_name='username')),
                ('first_name', models.CharField(blank=True, max_length=150, verbose_name='first name')),
                ('last_name', models.CharField(blank=True, max_length=150, verbose_name='last name')),
                ('is_staff', models.BooleanField(default=False, help_text='Designates whether the user can log into this admin site.', verbose_name='staff status')),
                ('is_active', models.BooleanField(default=True, help_text='Designates whether this user should be treated as active. Unselect this to deactivate instead of deleting accounts.', verbose_name='active')),
                ('date_joined', models.DateTimeField(default=django.utils.timezone.now, verbose_name='date joined')),
                ('email', models.EmailField(error_messages={'unique': 'A user with that email already exists.'}, help_text='Required. Enter a valid email address.', max_length=254, unique=True, verbose_name='email address')),
                ('name', models.CharField(blank=True, default='', help_text='Display name shown to other users.', max_length=100, verbose_name='name')),
                ('phone_number', models.CharField(blank=True, default='', help_text='Optional. Enter phone number in international format.', max_length=20, validators=[market.validators.validate_phone_number], verbose_name='phone number')),
                ('location', models.CharField(blank=True, default='', help_text='City or area where the user trades.', max_length=200, verbose_name='location')),
                ('bio', models.TextField(blank=True, default='', help_text='Short public biography (max 500 characters).', validators=[django.core.validators.MaxLengthValidator(500)], verbose_name='bio')),
                ('profile_image', models.ImageField(blank=True, help_text='Optional. Upload a profile picture (max 5MB, formats: jpg, png, webp).', null=True, upload_to=market.models.user_profile_image_upload_path, validators=[market.validators.validate_image_file], verbose_name='profile image')),
                ('trust_score', models.DecimalField(decimal_places=2, default=Decimal('0.00'), help_text='Reputation score from 0 to 100.', max_digits=5, validators=[django.core.validators.MinValueValidator(Decimal('0.00'), message='Trust score cannot be negative.'), django.core.validators.MaxValueValidator(Decimal('100.00'), message='Trust score cannot exceed 100.')], verbose_name='trust score')),
                ('is_verified', models.BooleanField(default=False, help_text='Indicates whether the e-mail address has been verified.', verbose_name='verified status')),
                ('verification_token', models.CharField(blank=True, default='', max_length=64, verbose_name='verification token')),
                ('verification_token_expiry', models.DateTimeField(blank=True, null=True, verbose_name='verification token expiry')),
                ('reset_password_token', models.CharField(blank=True, default='', max_length=64, verbose_name='reset password token')),
                ('reset_password_token_expiry', models.DateTimeField(blank=True, null=True, verbose_name='reset password token expiry')),
                ('created_at', models.DateTimeField(auto_now_add=True, help_text='Timestamp when the account was created.', verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the account was last updated.', verbose_name='updated at')),
                ('groups', models.ManyToManyField(blank=True, help_text='The groups this user belongs to. A user will get all permissions granted to each of their groups.', related_name='user_set', related_query_name='user', to='auth.group', verbose_name='groups')),
                ('user_permissions', models.ManyToManyField(blank=True, help_text='Specific permissions for this user.', related_name='user_set', related_query_name='user', to='auth.permission', verbose_name='user permissions')),
            ],
            options={
                'verbose_name': 'user',
                'verbose_name_plural': 'users',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['email'], name='market_user_email_idx'),
                    models.Index(fields=['is_verified'], name='market_user_verified_idx'),
                    models.Index(fields=['verification_token'], name='market_user_vtoken_idx'),
                    models.Index(fields=['reset_password_token'], name='market_user_rtoken_idx'),
                ],
            },
            managers=[
                ('objects', django.contrib.auth.models.UserManager()),
            ],
        ),
        migrations.CreateModel(
            name='Listing',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('title', models.CharField(help_text='Title of the listing (max 100 characters)', max_length=100, verbose_name='title')),
                ('description', models.TextField(help_text='Detailed description of the item (max 2000 characters)', validators=[django.core.validators.MaxLengthValidator(2000)], verbose_name='description')),
                ('price', models.DecimalField(decimal_places=2, help_text='Asking price in USD', max_digits=10, validators=[django.core.validators.MinValueValidator(Decimal('0.00'), message='Price cannot be negative.')], verbose_name='price')),
                ('category', models.CharField(help_text='Category of the item', max_length=50, verbose_name='category')),
                ('subcategory', models.CharField(blank=True, default='', help_text='Optional subcategory of the item', max_length=50, verbose_name='subcategory')),
                ('condition', models.CharField(choices=[('new', 'New'), ('like_new', 'Like New'), ('good', 'Good'), ('fair', 'Fair'), ('poor', 'Poor')], default='good', help_text='Condition of the item', max_length=20, verbose_name='condition')),
                ('location', models.CharField(blank=True, default='', help_text='Where the item can be picked up', max_length=200, verbose_name='location')),
                ('status', models.CharField(choices=[('active', 'Active'), ('pending', 'Pending'), ('sold', 'Sold'), ('deleted', 'Deleted')], default='active', help_text='Current availability of the listing', max_length=20, verbose_name='status')),
                ('created_at', models.DateTimeField(auto_now_add=True, help_text='Timestamp when the listing was created', verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the listing was last updated', verbose_name='updated at')),
                ('seller', models.ForeignKey(help_text='User selling this item', on_delete=django.db.models.deletion.CASCADE, related_name='listings', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'listing',
                'verbose_name_plural': 'listings',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['seller'], name='market_listing_seller_idx'),
                    models.Index(fields=['status'], name='market_listing_status_idx'),
                    models.Index(fields=['category'], name='market_listing_category_idx'),
                    models.Index(fields=['price'], name='market_listing_price_idx'),
                    models.Index(fields=['created_at'], name='market_listing_created_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ListingImage',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('image', models.ImageField(help_text='Image file (max 5MB, formats: jpg, png, webp)', upload_to=market.models.listing_image_upload_path, validators=[market.validators.validate_image_file], verbose_name='image')),
                ('is_primary', models.BooleanField(default=False, help_text='Whether this is the main image of the listing', verbose_name='is primary')),
                ('order', models.PositiveIntegerField(default=0, help_text='Display order for images', verbose_name='order')),
                ('uploaded_at', models.DateTimeField(auto_now_add=True, help_text='Timestamp when the image was uploaded', verbose_name='uploaded at')),
                ('listing', models.ForeignKey(help_text='Listing this image belongs to', on_delete=django.db.models.deletion.CASCADE, related_name='images', to='market.listing')),
            ],
            options={
                'verbose_name': 'listing image',
                'verbose_name_plural': 'listing images',
                'ordering': ['order', 'uploaded_at'],
                'indexes': [
                    models.Index(fields=['listing', 'order'], name='market_limage_order_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Offer',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('amount', models.DecimalField(decimal_places=2, help_text='Offered amount in USD (must be greater than 0)', max_digits=10, verbose_name='amount')),
                ('message', models.CharField(blank=True, default='', help_text='Optional note to the seller (max 500 characters)', max_length=500, verbose_name='message')),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('accepted', 'Accepted'), ('rejected', 'Rejected'), ('countered', 'Countered'), ('withdrawn', 'Withdrawn'), ('expired', 'Expired')], default='pending', help_text='Current status of the offer', max_length=20, verbose_name='status')),
                ('expires_at', models.DateTimeField(default=market.models.default_offer_expiry, help_text='When a pending offer lapses', verbose_name='expires at')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('buyer', models.ForeignKey(help_text='User making the offer', on_delete=django.db.models.deletion.CASCADE, related_name='offers_made', to=settings.AUTH_USER_MODEL)),
                ('counter_offer', models.ForeignKey(blank=True, help_text='New offer created when this one was countered', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='countered_from', to='market.offer')),
                ('listing', models.ForeignKey(help_text='Listing the offer is made on', on_delete=django.db.models.deletion.CASCADE, related_name='offers', to='market.listing')),
                ('seller', models.ForeignKey(help_text='Seller of the listing', on_delete=django.db.models.deletion.CASCADE, related_name='offers_received', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'offer',
                'verbose_name_plural': 'offers',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['listing', 'status'], name='market_offer_listing_idx'),
                    models.Index(fields=['buyer'], name='market_offer_buyer_idx'),
                    models.Index(fields=['seller'], name='market_offer_seller_idx'),
                    models.Index(fields=['status', 'expires_at'], name='market_offer_expiry_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('status', 'pending')), fields=('listing', 'buyer'), name='unique_pending_offer_per_buyer'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Payment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('amount', models.DecimalField(decimal_places=2, help_text='Amount charged', max_digits=10, verbose_name='amount')),
                ('currency', models.CharField(default='USD', max_length=3, verbose_name='currency')),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('processing', 'Processing'), ('completed', 'Completed'), ('failed', 'Failed'), ('refunded', 'Refunded')], default='pending', max_length=20, verbose_name='status')),
                ('payment_method', models.CharField(choices=[('credit_card', 'Credit Card'), ('debit_card', 'Debit Card'), ('paypal', 'PayPal'), ('stripe', 'Stripe')], default='stripe', max_length=20, verbose_name='payment method')),
                ('payment_intent_id', models.CharField(help_text='Stripe PaymentIntent identifier', max_length=255, unique=True, verbose_name='payment intent id')),
                ('payment_date', models.DateTimeField(blank=True, help_text='When the payment completed', null=True, verbose_name='payment date')),
                ('refund_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=10, verbose_name='refund amount')),
                ('refund_reason', models.CharField(blank=True, default='', max_length=500, verbose_name='refund reason')),
                ('refund_date', models.DateTimeField(blank=True, null=True, verbose_name='refund date')),
                ('metadata', models.JSONField(blank=True, default=dict, verbose_name='metadata')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('buyer', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='payments_made', to=settings.AUTH_USER_MODEL)),
                ('listing', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='payments', to='market.listing')),
                ('offer', models.ForeignKey(help_text='Accepted offer being paid', on_delete=django.db.models.deletion.PROTECT, related_name='payments', to='market.offer')),
                ('seller', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='payments_received', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'payment',
                'verbose_name_plural': 'payments',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['offer', 'status'], name='market_payment_offer_idx'),
                    models.Index(fields=['buyer'], name='market_payment_buyer_idx'),
                    models.Index(fields=['seller'], name='market_payment_seller_idx'),
                    models.Index(fields=['status', 'payment_date'], name='market_payment_status_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Order',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('processing', 'Processing'), ('shipped', 'Shipped'), ('delivered', 'Delivered'), ('completed', 'Completed'), ('cancelled', 'Cancelled'), ('returned', 'Returned')], default='pending', max_length=20, verbose_name='status')),
                ('shipping_name', models.CharField(blank=True, default='', max_length=100, verbose_name='shipping name')),
                ('shipping_street', models.CharField(blank=True, default='', max_length=200, verbose_name='shipping street')),
                ('shipping_city', models.CharField(blank=True, default='', max_length=100, verbose_name='shipping city')),
                ('shipping_state', models.CharField(blank=True, default='', max_length=100, verbose_name='shipping state')),
                ('shipping_zip_code', models.CharField(blank=True, default='', max_length=20, verbose_name='shipping zip code')),
                ('shipping_country', models.CharField(blank=True, default='', max_length=100, verbose_name='shipping country')),
                ('shipping_phone', models.CharField(blank=True, default='', max_length=20, validators=[market.validators.validate_phone_number], verbose_name='shipping phone')),
                ('tracking_number', models.CharField(blank=True, default='', max_length=100, verbose_name='tracking number')),
                ('tracking_url', models.URLField(blank=True, default='', verbose_name='tracking url')),
                ('carrier', models.CharField(blank=True, default='', max_length=100, verbose_name='carrier')),
                ('estimated_delivery_date', models.DateTimeField(blank=True, null=True, verbose_name='estimated delivery date')),
                ('actual_delivery_date', models.DateTimeField(blank=True, null=True, verbose_name='actual delivery date')),
                ('shipped_date', models.DateTimeField(blank=True, null=True, verbose_name='shipped date')),
                ('cancelled_date', models.DateTimeField(blank=True, null=True, verbose_name='cancelled date')),
                ('cancel_reason', models.CharField(blank=True, default='', max_length=500, verbose_name='cancel reason')),
                ('return_reason', models.CharField(blank=True, default='', max_length=500, verbose_name='return reason')),
                ('return_date', models.DateTimeField(blank=True, null=True, verbose_name='return date')),
                ('notes', models.TextField(blank=True, default='', verbose_name='notes')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('buyer', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='orders_placed', to=settings.AUTH_USER_MODEL)),
                ('listing', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='orders', to='market.listing')),
                ('offer', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='orders', to='market.offer')),
                ('payment', models.OneToOneField(on_delete=django.db.models.deletion.PROTECT, related_name='order', to='market.payment')),
                ('seller', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='orders_received', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'order',
                'verbose_name_plural': 'orders',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['buyer'], name='market_order_buyer_idx'),
                    models.Index(fields=['seller'], name='market_order_seller_idx'),
                    models.Index(fields=['listing', 'status'], name='market_order_listing_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Message',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('content', models.TextField(help_text='Message text (1 to 2000 characters)', validators=[django.core.validators.MaxLengthValidator(2000)], verbose_name='content')),
                ('is_read', models.BooleanField(default=False, verbose_name='is read')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('listing', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='messages', to='market.listing')),
                ('receiver', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='received_messages', to=settings.AUTH_USER_MODEL)),
                ('sender', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='sent_messages', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'message',
                'verbose_name_plural': 'messages',
                'ordering': ['created_at'],
                'indexes': [
                    models.Index(fields=['sender', 'receiver'], name='market_msg_pair_idx'),
                    models.Index(fields=['receiver', 'is_read'], name='market_msg_unread_idx'),
                    models.Index(fields=['created_at'], name='market_msg_created_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Notification',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('notification_type', models.CharField(choices=[('message', 'Message'), ('listing', 'Listing'), ('offer', 'Offer'), ('payment', 'Payment'), ('order', 'Order')], max_length=20, verbose_name='type')),
                ('title', models.CharField(max_length=200, verbose_name='title')),
                ('message', models.CharField(max_length=500, verbose_name='message')),
                ('is_read', models.BooleanField(default=False, verbose_name='is read')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('listing', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='+', to='market.listing')),
                ('offer', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='+', to='market.offer')),
                ('order', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='+', to='market.order')),
                ('payment', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='+', to='market.payment')),
                ('sender', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='notifications', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'notification',
                'verbose_name_plural': 'notifications',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['user', 'is_read'], name='market_notif_unread_idx'),
                    models.Index(fields=['user', 'created_at'], name='market_notif_created_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='AnalyticsEvent',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('session_id', models.CharField(blank=True, default='', max_length=100, verbose_name='session id')),
                ('category', models.CharField(choices=[('page_view', 'Page View'), ('interaction', 'Interaction'), ('conversion', 'Conversion'), ('photo_to_post', 'Photo to Post')], max_length=20, verbose_name='category')),
                ('action', models.CharField(max_length=100, verbose_name='action')),
                ('data', models.JSONField(blank=True, default=dict, verbose_name='data')),
                ('timestamp', models.DateTimeField(default=django.utils.timezone.now, verbose_name='timestamp')),
                ('user', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='analytics_events', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'analytics event',
                'verbose_name_plural': 'analytics events',
                'ordering': ['-timestamp'],
                'indexes': [
                    models.Index(fields=['category', 'timestamp'], name='market_event_cat_idx'),
                    models.Index(fields=['user', 'timestamp'], name='market_event_user_idx'),
                ],
            },
        ),
    ]
