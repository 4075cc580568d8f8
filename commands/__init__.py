# Commands package for the ticket and admin cogs
