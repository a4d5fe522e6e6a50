# Generated migration adding the range annulment compliance type

from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("audit", "0001_initial"),
    ]

    operations = [
        migrations.AlterField(
            model_name="compliancelog",
            name="compliance_type",
            field=models.CharField(
                choices=[
                    ("sequence_registration", "Sequence Range Registration"),
                    ("sequence_allocation", "e-NCF Allocation"),
                    ("sequence_low", "Sequence Range Running Low"),
                    ("sequence_annulment", "e-NCF Range Annulment"),
                    ("ecf_submission", "e-CF Submission"),
                    ("ecf_status", "e-CF Status Change"),
                    ("ecf_void", "e-CF Void"),
                    ("contingency_entry", "Contingency Entry"),
                    ("contingency_expired", "Contingency Deadline Expired"),
                ],
                max_length=30,
            ),
        ),
    ]
