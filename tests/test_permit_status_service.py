from __future__ import annotations

import unittest

from fakes import make_image, make_payment, make_permit

from permithub.services.permit_records import PROOF_OF_PAYMENT
from permithub.services.permit_status_service import aggregate, derive_view, has_completed_payment, last_completed_payment


class PermitStatusServiceTests(unittest.TestCase):
    def test_latest_completed_payment_wins_regardless_of_order(self) -> None:
        payments = [
            make_payment('p-old', 'completed', 4),
            make_payment('p-failed', 'failed', 9),
            make_payment('p-new', 'completed', 7),
            make_payment('p-pending', 'pending', 8),
        ]
        self.assertEqual(last_completed_payment(payments).id, 'p-new')
        self.assertEqual(last_completed_payment(reversed(payments)).id, 'p-new')

    def test_no_completed_payment(self) -> None:
        permit = make_permit(payments=[make_payment('p1', 'pending', 4), make_payment('p2', 'failed', 5)])
        view = derive_view(permit)
        self.assertFalse(view.has_completed_payment)
        self.assertIsNone(view.last_completed_payment)

    def test_completed_payment_marks_paid(self) -> None:
        view = derive_view(make_permit(payments=[make_payment('p1', 'completed', 4, reference='GC-1')]))
        self.assertTrue(view.has_completed_payment)
        self.assertEqual(view.last_completed_payment.payment_reference, 'GC-1')

    def test_proof_of_payment_image_alone_marks_paid(self) -> None:
        permit = make_permit(images=[make_image(1, PROOF_OF_PAYMENT)])
        self.assertTrue(has_completed_payment(permit))
        self.assertIsNone(derive_view(permit).last_completed_payment)

    def test_other_images_do_not_count(self) -> None:
        permit = make_permit(images=[make_image(1, 'valid_id'), make_image(2, 'site_photo')])
        self.assertFalse(has_completed_payment(permit))

    def test_aggregate_preserves_order_and_permits(self) -> None:
        permits = [make_permit('c'), make_permit('a'), make_permit('b')]
        views = aggregate(permits)
        self.assertEqual([view.permit.id for view in views], ['c', 'a', 'b'])
        self.assertIs(views[0].permit, permits[0])

    def test_aggregate_of_nothing_is_empty(self) -> None:
        self.assertEqual(aggregate([]), [])


if __name__ == '__main__':
    unittest.main()
