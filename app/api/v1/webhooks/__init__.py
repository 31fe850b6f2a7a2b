"""Provider webhook endpoints"""
