"""
Tests for partner code generation and normalization.
"""
from prohealth.services.promo_codes import (
    normalize_code,
    generate_promo_code,
    generate_identification,
    to_base36,
)


class TestNormalizeCode:

    def test_trims_and_uppercases(self):
        assert normalize_code('  pro_duje ') == 'PRO_DUJE'

    def test_none_is_empty(self):
        assert normalize_code(None) == ''


class TestGeneratePromoCode:

    def test_last_name_then_first_name(self):
        assert generate_promo_code('Jean', 'Dupont', 'PRO_') == 'PRO_DUJE'

    def test_missing_parts_use_placeholder(self):
        assert generate_promo_code('', 'Martin', 'PRO_') == 'PRO_MAXX'
        assert generate_promo_code('Alice', None, 'PRO_') == 'PRO_XXAL'

    def test_single_letter_name(self):
        assert generate_promo_code('Li', 'O', 'PRO_') == 'PRO_OLI'

    def test_counter_appended_when_taken(self):
        taken = ['PRO_DUJE', 'pro_duje1']
        assert generate_promo_code('Jean', 'Dupont', 'PRO_', taken) == 'PRO_DUJE2'

    def test_existing_codes_compared_case_insensitively(self):
        assert generate_promo_code('jean', 'dupont', 'pro_', ['Pro_DuJe']) == 'PRO_DUJE1'

    def test_custom_prefix(self):
        assert generate_promo_code('Jean', 'Dupont', 'KINE-') == 'KINE-DUJE'


class TestGenerateIdentification:

    def test_base36(self):
        assert to_base36(0) == '0'
        assert to_base36(35) == 'z'
        assert to_base36(36) == '10'

    def test_initials_and_time_suffix(self):
        now_ms = 36 ** 4 + 35  # base 36: '1000z'
        assert generate_identification('Jean', 'Dupont', now_ms=now_ms) == 'JEDU000Z'

    def test_different_times_give_different_ids(self):
        first = generate_identification('Jean', 'Dupont', now_ms=1_700_000_000_000)
        second = generate_identification('Jean', 'Dupont', now_ms=1_700_000_000_001)
        assert first != second
        assert first.startswith('JEDU')

    def test_taken_identification_is_skipped(self):
        now_ms = 36 ** 4 + 35
        result = generate_identification('Jean', 'Dupont', now_ms=now_ms, existing=['jedu000z'])
        assert result == 'JEDU0010'
