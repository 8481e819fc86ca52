"""
BloomFundr Payment Back Office

HTTP routers for order settlement, Stripe webhooks and payout administration.
"""
