"""Warehouse Service — 冪等なイベント駆動の在庫割り当て"""
