import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

import opd.models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Profile',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('role', models.CharField(choices=[('admin', 'Administrator'), ('doctor', 'Doctor'), ('nurse', 'Nurse'), ('staff', 'Staff'), ('patient', 'Patient')], db_index=True, default='patient', max_length=10)),
                ('full_name', models.CharField(blank=True, max_length=255)),
                ('phone', models.CharField(blank=True, max_length=20)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('user', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='profile', to=settings.AUTH_USER_MODEL)),
            ],
        ),
        migrations.CreateModel(
            name='QueueEntry',
            fields=[
                ('id', models.CharField(default=opd.models._entry_id, editable=False, max_length=64, primary_key=True, serialize=False)),
                ('name', models.CharField(max_length=255)),
                ('department', models.CharField(choices=[('ENT', 'ENT'), ('Ortho', 'Orthopaedics'), ('Cardio', 'Cardiology'), ('Neuro', 'Neurology'), ('General', 'General Medicine'), ('Pediatric', 'Paediatrics'), ('Gynecology', 'Gynaecology')], db_index=True, max_length=20)),
                ('status', models.CharField(choices=[('waiting', 'Waiting'), ('assigned', 'With Doctor'), ('completed', 'Completed')], db_index=True, default='waiting', max_length=20)),
                ('assigned_doctor', models.CharField(blank=True, max_length=255)),
                ('token_number', models.PositiveIntegerField(blank=True, null=True)),
                ('symptoms', models.TextField(blank=True)),
                ('joined_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('registration_time', models.DateTimeField(blank=True, null=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'opd_queue',
                'indexes': [models.Index(fields=['status', 'joined_at'], name='opd_queue_status_joined_idx')],
            },
        ),
        migrations.CreateModel(
            name='QueueEntryTransition',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('from_status', models.CharField(blank=True, max_length=20, null=True)),
                ('to_status', models.CharField(max_length=20)),
                ('timestamp', models.DateTimeField(auto_now_add=True)),
                ('reason', models.CharField(blank=True, max_length=255)),
                ('entry', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='transitions', to='opd.queueentry')),
                ('operator', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='queue_transitions', to=settings.AUTH_USER_MODEL)),
            ],
        ),
    ]
