import datetime
from decimal import Decimal

from django.test import SimpleTestCase, override_settings

from ledger_core.services.matching import (NO_MATCH, InvoiceCandidate, MatchPolicy,
                                           decide_match, fold_diacritics,
                                           normalize_partner_name, normalize_reference,
                                           partner_names_match, select_candidate)

D = Decimal


def candidate(pk, number, partner, amount, issued=datetime.date(2025, 1, 1)):
    return InvoiceCandidate(pk, number, partner, D(amount), issued)


class NormalizationTests(SimpleTestCase):

    def test_reference_trimmed_and_case_folded(self):
        self.assertEqual(normalize_reference("  Inv-100 "), "inv-100")
        self.assertEqual(normalize_reference(None), "")

    def test_diacritics_folded(self):
        self.assertEqual(fold_diacritics("Čačak Šabac Žabalj"), "Cacak Sabac Zabalj")
        self.assertEqual(fold_diacritics("Đurđevo"), "Djurdjevo")

    def test_legal_form_and_punctuation_removed(self):
        self.assertEqual(normalize_partner_name("Marković d.o.o., Beograd"), "markovic beograd")
        self.assertEqual(normalize_partner_name("Đorđević pr"), "djordjevic")
        self.assertEqual(normalize_partner_name("ACME DOO"), "acme")
        self.assertEqual(normalize_partner_name("Globex Ltd."), "globex")

    def test_legal_form_inside_word_kept(self):
        self.assertEqual(normalize_partner_name("Promet Padina pr"), "promet padina")


class PartnerNameTests(SimpleTestCase):

    def test_substring_match(self):
        self.assertTrue(partner_names_match("Acme", "ACME Trading d.o.o."))

    def test_substring_must_cover_whole_words(self):
        self.assertFalse(partner_names_match("Ana", "Banana d.o.o."))
        self.assertFalse(partner_names_match("Petar", "Petrovic Petarda"))
        self.assertTrue(partner_names_match("Ana", "Ana Banana pr"))

    def test_token_overlap_any_order(self):
        self.assertTrue(partner_names_match("Petar Petrovic Nis", "Petrović Petar"))

    def test_token_overlap_below_threshold(self):
        self.assertFalse(partner_names_match(
            "Petar Petrovic Nis", "Petrovic Petar", min_token_overlap=D("0.8")))

    def test_different_partners(self):
        self.assertFalse(partner_names_match("Acme d.o.o.", "Globex d.o.o."))

    def test_empty_names_never_match(self):
        self.assertFalse(partner_names_match("", "Acme"))
        self.assertFalse(partner_names_match("d.o.o.", "d.o.o."))


class SelectCandidateTests(SimpleTestCase):

    def test_empty(self):
        self.assertEqual(select_candidate([], MatchPolicy()), (None, False))

    def test_single(self):
        only = candidate(1, "INV-1", "Acme", "10.00")
        self.assertEqual(select_candidate([only], MatchPolicy()), (only, False))

    def test_tie_goes_to_review(self):
        tied = [candidate(1, "INV-1", "Acme", "10.00"), candidate(2, "INV-2", "Acme", "10.00")]
        self.assertEqual(select_candidate(tied, MatchPolicy()), (None, True))

    def test_tie_takes_oldest_when_allowed(self):
        newer = candidate(1, "INV-1", "Acme", "10.00", datetime.date(2025, 3, 1))
        older = candidate(2, "INV-2", "Acme", "10.00", datetime.date(2025, 2, 1))
        chosen, ambiguous = select_candidate([newer, older], MatchPolicy(review_ties=False))

        self.assertIs(chosen, older)
        self.assertFalse(ambiguous)


class DecideMatchTests(SimpleTestCase):

    def setUp(self):
        self.candidates = [
            candidate(1, "INV-100", "Marković d.o.o.", "1200.00"),
            candidate(2, "INV-101", "Globex", "300.00"),
        ]

    def test_reference_wins(self):
        decision = decide_match(" inv-100 ", D("50.00"), "Nobody", self.candidates)

        self.assertTrue(decision.matched)
        self.assertEqual(decision.invoice_id, 1)
        self.assertEqual(decision.method, "reference")

    def test_amount_and_partner(self):
        decision = decide_match("", D("300.00"), "GLOBEX DOO", self.candidates)

        self.assertEqual(decision.invoice_id, 2)
        self.assertEqual(decision.method, "amount_partner")

    def test_amount_without_partner_is_no_match(self):
        decision = decide_match("", D("300.00"), "Initech", self.candidates)
        self.assertEqual(decision, NO_MATCH)
        self.assertFalse(decision.matched)

    def test_partner_without_amount_is_no_match(self):
        decision = decide_match("", D("299.99"), "Globex", self.candidates)
        self.assertEqual(decision, NO_MATCH)

    def test_unknown_reference_falls_back_to_amount(self):
        decision = decide_match("PAY-7", D("1200.00"), "Markovic", self.candidates)
        self.assertEqual(decision.invoice_id, 1)
        self.assertEqual(decision.method, "amount_partner")

    def test_ambiguous_amount_partner(self):
        candidates = [
            candidate(1, "INV-1", "Acme d.o.o.", "500.00"),
            candidate(2, "INV-2", "Acme d.o.o.", "500.00"),
        ]
        decision = decide_match("", D("500.00"), "ACME", candidates)

        self.assertFalse(decision.matched)
        self.assertTrue(decision.ambiguous)

    def test_ambiguous_resolved_by_policy(self):
        candidates = [
            candidate(1, "INV-1", "Acme d.o.o.", "500.00", datetime.date(2025, 2, 1)),
            candidate(2, "INV-2", "Acme d.o.o.", "500.00", datetime.date(2025, 1, 1)),
        ]
        decision = decide_match(
            "", D("500.00"), "ACME", candidates, MatchPolicy(review_ties=False))

        self.assertEqual(decision.invoice_id, 2)


class MatchPolicySettingsTests(SimpleTestCase):

    def test_defaults(self):
        with override_settings(LEDGER_MATCH_POLICY={}):
            policy = MatchPolicy.from_settings()
        self.assertEqual(policy, MatchPolicy())

    @override_settings(LEDGER_MATCH_POLICY={"MIN_TOKEN_OVERLAP": "0.75", "REVIEW_TIES": False})
    def test_overrides(self):
        policy = MatchPolicy.from_settings()

        self.assertEqual(policy.min_token_overlap, D("0.75"))
        self.assertFalse(policy.review_ties)
