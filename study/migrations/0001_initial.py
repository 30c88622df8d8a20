import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='BudgetPeriod',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('period_start', models.DateTimeField(unique=True)),
                ('spend', models.DecimalField(decimal_places=8, default=0, max_digits=12)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Budget Period',
                'verbose_name_plural': 'Budget Periods',
                'ordering': ['-period_start'],
            },
        ),
        migrations.CreateModel(
            name='AIJobsHistory',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('agent', models.CharField(default='study.ai', max_length=200)),
                ('operation', models.CharField(choices=[('chat', 'Chat'), ('embed', 'Embed')], default='chat', max_length=20)),
                ('user_id', models.CharField(blank=True, default='', max_length=64)),
                ('provider', models.CharField(max_length=50)),
                ('model', models.CharField(blank=True, default='', max_length=200)),
                ('status', models.CharField(choices=[('Pending', 'Pending'), ('Completed', 'Completed'), ('Error', 'Error'), ('Denied', 'Denied')], default='Pending', max_length=20)),
                ('input_tokens', models.PositiveIntegerField(blank=True, null=True)),
                ('output_tokens', models.PositiveIntegerField(blank=True, null=True)),
                ('costs', models.DecimalField(blank=True, decimal_places=8, max_digits=12, null=True)),
                ('timestamp', models.DateTimeField(default=django.utils.timezone.now)),
                ('duration_ms', models.PositiveIntegerField(blank=True, null=True)),
                ('error_message', models.TextField(blank=True, default='')),
            ],
            options={
                'verbose_name': 'AI Jobs History',
                'verbose_name_plural': 'AI Jobs History',
                'ordering': ['-timestamp'],
                'indexes': [
                    models.Index(fields=['provider', 'model', 'status', 'timestamp'], name='study_job_provider_idx'),
                    models.Index(fields=['user_id', 'timestamp'], name='study_job_user_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='IndexedDocument',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('source_id', models.CharField(max_length=64, unique=True)),
                ('user_id', models.CharField(db_index=True, max_length=64)),
                ('course_id', models.CharField(blank=True, default='', max_length=64)),
                ('title', models.CharField(blank=True, default='', max_length=255)),
                ('content_hash', models.CharField(max_length=64)),
                ('chunk_count', models.PositiveIntegerField(default=0)),
                ('indexed_at', models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                'verbose_name': 'Indexed Document',
                'verbose_name_plural': 'Indexed Documents',
                'ordering': ['-indexed_at'],
                'indexes': [
                    models.Index(fields=['user_id', 'course_id'], name='study_doc_scope_idx'),
                ],
            },
        ),
    ]
