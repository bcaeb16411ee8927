"""
Campaigns App - Bulk Purchase Campaigns

Customers pool demand for a product at a location until the product's bulk
threshold is reached. The first customer opens a campaign and pays upfront,
nearby customers join it, and the campaign completes once the committed
quantity reaches the target.

Key Features:
- Campaign start with proximity exclusion around the anchor location
- Joining with capacity enforcement under row locks
- Deferred completion after payment confirmation
- Cancellation with refunds through the payment gateway
- Expiry sweeping of overdue campaigns and unpaid commitments

Architecture:
- Models: Campaign, Commitment
- Services: lifecycle engine, store, geo, expiry, payments, notifications
- Views: RESTful API with ViewSets plus payment callbacks
- Exceptions: Domain exception hierarchy mapped to HTTP statuses
"""
