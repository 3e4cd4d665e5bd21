from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.utils import timezone

from shoots.models import Issue, Shoot


class Command(BaseCommand):
    help = "Seed demo users and shoots for local development."

    def _user(self, User, username, role, password, **extra):
        user, created = User.objects.get_or_create(
            username=username,
            defaults={
                "email": f"{username}@example.com",
                "role": role,
                "is_active": True,
                **extra,
            },
        )
        if created:
            user.set_password(password)
            user.save(update_fields=["password"])
        return user

    def handle(self, *args, **options):
        User = get_user_model()

        superadmin = self._user(
            User, "superadmin", User.Role.SUPERADMIN, "superadmin1234", is_staff=True, is_superuser=True
        )
        admin = self._user(User, "admin", User.Role.ADMIN, "admin1234", is_staff=True)
        photographer = self._user(User, "photographer", User.Role.PHOTOGRAPHER, "photographer1234", first_name="Pat")
        editor = self._user(User, "editor", User.Role.EDITOR, "editor1234", first_name="Eddie")
        client = self._user(User, "client", User.Role.CLIENT, "client1234", first_name="Casey", company="Open House Realty")

        today = timezone.localdate()
        demo_shoots = [
            ("12 Harbor View Rd", Shoot.Status.BOOKED, today + timedelta(days=2), None),
            ("48 Maple Ave", Shoot.Status.RAW_UPLOADED, today - timedelta(days=1), None),
            ("7 Orchard Ln", Shoot.Status.EDITING, today - timedelta(days=3), editor),
            ("301 Lakeshore Dr", Shoot.Status.IN_REVIEW, today - timedelta(days=5), editor),
        ]
        for address, shoot_status, scheduled_date, assigned_editor in demo_shoots:
            shoot, created = Shoot.objects.get_or_create(
                address=address,
                defaults={
                    "status": shoot_status,
                    "scheduled_date": scheduled_date,
                    "time": "10:00",
                    "city": "Springfield",
                    "state": "IL",
                    "zip": "62701",
                    "client": client,
                    "client_name": client.display_name,
                    "client_email": client.email,
                    "photographer": photographer,
                    "editor": assigned_editor,
                    "services": ["HDR Photos", "Drone"],
                    "base_quote": Decimal("250.00"),
                    "tax_rate": Decimal("8.00"),
                    "package_name": "Standard 25",
                    "expected_delivered_count": 25,
                    "bracket_mode": Shoot.BracketMode.THREE,
                },
            )
            if created:
                shoot.recalculate_totals()
                shoot.save(update_fields=["base_quote", "tax_amount", "total_quote"])

        review_shoot = Shoot.objects.get(address="301 Lakeshore Dr")
        Issue.objects.get_or_create(
            shoot=review_shoot,
            note="Kitchen window is blown out in two shots.",
            defaults={
                "raised_by": client,
                "raised_by_role": User.Role.CLIENT,
                "assigned_to_role": Issue.AssigneeRole.EDITOR,
            },
        )

        self.stdout.write(self.style.SUCCESS("Demo data seeded successfully."))
        self.stdout.write(
            "Credentials: superadmin/superadmin1234, admin/admin1234, photographer/photographer1234, "
            "editor/editor1234, client/client1234"
        )
        self.stdout.write(f"Shoots: {Shoot.objects.count()} | Open issues: {Issue.objects.exclude(status='resolved').count()}")
        self.stdout.write(f"Superadmin id: {superadmin.id} | Admin id: {admin.id}")
