import pytest
from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser

from opd.access import FEATURE_ACCESS, ROLES, features_for_role, has_access, role_for_user
from opd.models import Profile


@pytest.mark.parametrize('role', ['admin', 'doctor', 'nurse', 'staff'])
def test_clinical_roles_can_open_the_queue(role):
    assert has_access(role, 'opdQueue')


def test_patient_cannot_open_the_queue_but_can_register_a_visit():
    assert not has_access('patient', 'opdQueue')
    assert has_access('patient', 'doctorVisit')


def test_missing_role_has_no_access():
    for feature in FEATURE_ACCESS:
        assert not has_access(None, feature)
        assert not has_access('', feature)


def test_unknown_feature_is_denied():
    assert not has_access('admin', 'payroll')


def test_every_role_in_the_table_is_known():
    for roles in FEATURE_ACCESS.values():
        assert roles <= set(ROLES)


def test_features_for_role():
    assert features_for_role('staff') == [
        'dashboard', 'opdQueue', 'bedAvailability', 'inventory',
        'opdPrediction', 'admissions', 'doctorVisit', 'settings',
    ]
    assert features_for_role('patient') == ['doctorVisit', 'settings']
    assert features_for_role(None) == []


@pytest.mark.django_db
def test_role_for_user():
    User = get_user_model()
    nurse = User.objects.create_user(username='nurse1', password='P@ssw0rd1')
    Profile.objects.create(user=nurse, role='nurse')
    bare = User.objects.create_user(username='bare', password='P@ssw0rd1')
    root = User.objects.create_superuser(username='root', password='P@ssw0rd1', email='root@example.com')

    assert role_for_user(nurse) == 'nurse'
    assert role_for_user(bare) is None
    assert role_for_user(root) == 'admin'
    assert role_for_user(AnonymousUser()) is None
    assert role_for_user(None) is None
