import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("ledger", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="TransactionEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "event_type",
                    models.CharField(
                        choices=[
                            ("created", "Created"),
                            ("updated", "Updated"),
                            ("deleted", "Deleted"),
                            ("restored", "Restored"),
                        ],
                        max_length=20,
                    ),
                ),
                ("event_timestamp", models.DateTimeField(auto_now_add=True)),
                ("actor", models.CharField(blank=True, max_length=150, null=True)),
                ("old_values", models.JSONField(blank=True, null=True)),
                ("new_values", models.JSONField(blank=True, null=True)),
                ("changed_fields", models.JSONField(blank=True, default=list)),
                (
                    "transaction",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="events",
                        to="ledger.transaction",
                    ),
                ),
            ],
            options={
                "ordering": ["event_timestamp", "id"],
                "indexes": [
                    models.Index(fields=["transaction", "event_timestamp"], name="ledger_txevent_tx_ts_idx"),
                    models.Index(fields=["actor"], name="ledger_txevent_actor_idx"),
                ],
            },
        ),
    ]
