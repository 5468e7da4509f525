"""
Seed the OPD queue with demo patients.

Also makes sure one login per dashboard role exists (password
``123456``) and prints their API tokens, so the board can be tried
end to end right after ``migrate``.
"""
import random

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from rest_framework.authtoken.models import Token

from opd.models import Profile, QueueEntry
from opd.services.queue import assign_doctor, complete_visit, join_queue

DEMO_USERS = [
    ("admin1", "admin"),
    ("doctor1", "doctor"),
    ("nurse1", "nurse"),
    ("staff1", "staff"),
    ("patient1", "patient"),
]

PATIENT_NAMES = [
    "Aarav Sharma", "Diya Patel", "Vihaan Reddy", "Ananya Iyer", "Kabir Singh",
    "Meera Nair", "Arjun Gupta", "Saanvi Joshi", "Rohan Das", "Ishita Menon",
]

DOCTORS = ["Dr. Rao", "Dr. Kulkarni", "Dr. Banerjee", "Dr. Fernandes"]

SYMPTOMS = ["fever", "back pain", "chest discomfort", "headache", "ear ache", "follow-up"]


class Command(BaseCommand):
    help = "Create demo role users and fill the OPD queue with sample patients."

    def add_arguments(self, parser):
        parser.add_argument("--count", type=int, default=10, help="number of queue entries to create")
        parser.add_argument("--no-users", action="store_true", help="skip the demo role users")

    def handle(self, *args, **opts):
        if not opts["no_users"]:
            self.ensure_users()
        self.create_entries(opts["count"])
        self.stdout.write(self.style.SUCCESS("OPD queue seeded."))

    def ensure_users(self):
        User = get_user_model()
        for username, role in DEMO_USERS:
            user, created = User.objects.get_or_create(username=username, defaults={"is_active": True})
            if created:
                user.set_password("123456")
                user.save()
            Profile.objects.update_or_create(user=user, defaults={"role": role})
            token, _ = Token.objects.get_or_create(user=user)
            self.stdout.write(f"ok: {username} ({role}) token={token.key}")

    def create_entries(self, count):
        departments = [code for code, _ in QueueEntry.DEPARTMENT_CHOICES]
        for _ in range(count):
            entry = join_queue(
                name=random.choice(PATIENT_NAMES),
                department=random.choice(departments),
                symptoms=random.choice(SYMPTOMS),
            )
            roll = random.random()
            if roll < 0.3:
                assign_doctor(entry.id, random.choice(DOCTORS))
            elif roll < 0.4:
                assign_doctor(entry.id, random.choice(DOCTORS))
                complete_visit(entry.id)
        self.stdout.write(f"created {count} queue entries")
